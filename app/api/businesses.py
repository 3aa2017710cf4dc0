"""Business (tenant) API and operator event emission."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models import Business
from app.schemas import BusinessCreate, BusinessOut, EventTrigger
from app.services.webhook_dispatcher import WebhookDispatcher, get_dispatcher

router = APIRouter(prefix="/businesses", tags=["businesses"])


@router.post("/", response_model=BusinessOut, status_code=201)
async def create_business(data: BusinessCreate, db: AsyncSession = Depends(get_db)):
    business = Business(name=data.name)
    db.add(business)
    await db.commit()
    await db.refresh(business)
    return business


@router.get("/{business_id}", response_model=BusinessOut)
async def get_business(business_id: str, db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(Business).where(Business.id == business_id))
    business = result.scalar_one_or_none()
    if not business:
        raise HTTPException(404, "Business not found")
    return business


@router.post("/{business_id}/events", status_code=202)
async def emit_event(
    business_id: str,
    data: EventTrigger,
    db: AsyncSession = Depends(get_db),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    """Hand an event to the dispatcher; delivery happens in the background."""
    result = await db.execute(select(Business.id).where(Business.id == business_id))
    if result.scalar_one_or_none() is None:
        raise HTTPException(404, "Business not found")
    try:
        envelope = await dispatcher.trigger(business_id, data.event, data.data)
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {
        "message": "Event accepted for dispatch",
        "event": data.event,
        "timestamp": envelope.timestamp if envelope else None,
    }
