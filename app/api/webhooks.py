"""Webhook endpoint configuration, test delivery and delivery log API."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models import Business
from app.models.webhook import WEBHOOK_EVENTS
from app.schemas import (
    DeliveryDetail,
    DeliveryPage,
    DeliveryTestOut,
    SecretOut,
    WebhookCreate,
    WebhookCreatedOut,
    WebhookListOut,
    WebhookOut,
    WebhookUpdate,
)
from app.services.webhook_dispatcher import WebhookDispatcher, get_dispatcher
from app.services.webhook_recorder import MAX_PAGE_SIZE, DeliveryRecorder
from app.services.webhook_registry import EndpointRegistry

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
endpoints_router = APIRouter(prefix="/businesses/{business_id}/webhooks", tags=["webhooks"])


def get_registry(request: Request) -> EndpointRegistry:
    return request.app.state.registry


def get_recorder(request: Request) -> DeliveryRecorder:
    return request.app.state.recorder


async def require_business(business_id: str, db: AsyncSession = Depends(get_db)) -> str:
    result = await db.execute(select(Business.id).where(Business.id == business_id))
    if result.scalar_one_or_none() is None:
        raise HTTPException(404, "Business not found")
    return business_id


async def _get_endpoint_or_404(registry: EndpointRegistry, business_id: str, endpoint_id: str):
    endpoint = await registry.get_endpoint(business_id, endpoint_id)
    if not endpoint:
        raise HTTPException(404, "Webhook endpoint not found")
    return endpoint


# ── Event types ──────────────────────────────────────────
@router.get("/events", response_model=list[str])
async def list_event_types():
    """List all available webhook event types."""
    return WEBHOOK_EVENTS


# ── Endpoints ────────────────────────────────────────────
@endpoints_router.get("/", response_model=WebhookListOut)
async def list_webhooks(
    business_id: str = Depends(require_business),
    registry: EndpointRegistry = Depends(get_registry),
):
    endpoints = await registry.list_endpoints(business_id)
    return WebhookListOut(
        endpoints=[WebhookOut.from_model(ep) for ep in endpoints],
        available_events=WEBHOOK_EVENTS,
    )


@endpoints_router.post("/", response_model=WebhookCreatedOut, status_code=201)
async def create_webhook(
    data: WebhookCreate,
    business_id: str = Depends(require_business),
    registry: EndpointRegistry = Depends(get_registry),
):
    try:
        endpoint, secret = await registry.create_endpoint(business_id, data.name, data.url, data.events)
    except ValueError as e:
        raise HTTPException(400, {"error": str(e), "available_events": WEBHOOK_EVENTS})
    return WebhookCreatedOut(**WebhookOut.from_model(endpoint).model_dump(), secret=secret)


@endpoints_router.get("/{endpoint_id}", response_model=WebhookOut)
async def get_webhook(
    endpoint_id: str,
    business_id: str = Depends(require_business),
    registry: EndpointRegistry = Depends(get_registry),
):
    endpoint = await _get_endpoint_or_404(registry, business_id, endpoint_id)
    return WebhookOut.from_model(endpoint)


@endpoints_router.patch("/{endpoint_id}", response_model=WebhookOut)
async def update_webhook(
    endpoint_id: str,
    data: WebhookUpdate,
    business_id: str = Depends(require_business),
    registry: EndpointRegistry = Depends(get_registry),
):
    try:
        endpoint = await registry.update_endpoint(
            business_id, endpoint_id, **data.model_dump(exclude_unset=True)
        )
    except ValueError as e:
        raise HTTPException(400, {"error": str(e), "available_events": WEBHOOK_EVENTS})
    if not endpoint:
        raise HTTPException(404, "Webhook endpoint not found")
    return WebhookOut.from_model(endpoint)


@endpoints_router.post("/{endpoint_id}/regenerate-secret", response_model=SecretOut)
async def regenerate_secret(
    endpoint_id: str,
    business_id: str = Depends(require_business),
    registry: EndpointRegistry = Depends(get_registry),
):
    secret = await registry.regenerate_secret(business_id, endpoint_id)
    if secret is None:
        raise HTTPException(404, "Webhook endpoint not found")
    return SecretOut(id=endpoint_id, secret=secret)


@endpoints_router.delete("/{endpoint_id}", status_code=204)
async def delete_webhook(
    endpoint_id: str,
    business_id: str = Depends(require_business),
    registry: EndpointRegistry = Depends(get_registry),
):
    if not await registry.delete_endpoint(business_id, endpoint_id):
        raise HTTPException(404, "Webhook endpoint not found")


@endpoints_router.post("/{endpoint_id}/test", response_model=DeliveryTestOut)
async def test_webhook(
    endpoint_id: str,
    business_id: str = Depends(require_business),
    registry: EndpointRegistry = Depends(get_registry),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    """Send a signed test event and return the endpoint's immediate response."""
    endpoint = await _get_endpoint_or_404(registry, business_id, endpoint_id)
    return await dispatcher.send_test(business_id, endpoint)


# ── Delivery log ─────────────────────────────────────────
@endpoints_router.get("/{endpoint_id}/deliveries", response_model=DeliveryPage)
async def list_deliveries(
    endpoint_id: str,
    event: Optional[str] = None,
    success: Optional[bool] = None,
    limit: int = Query(50, ge=1),
    offset: int = Query(0, ge=0),
    business_id: str = Depends(require_business),
    registry: EndpointRegistry = Depends(get_registry),
    recorder: DeliveryRecorder = Depends(get_recorder),
):
    """Delivery history for an endpoint, newest first."""
    await _get_endpoint_or_404(registry, business_id, endpoint_id)
    limit = min(limit, MAX_PAGE_SIZE)
    rows, total = await recorder.query(
        endpoint_id, event_type=event, success=success, limit=limit, offset=offset
    )
    return DeliveryPage(deliveries=rows, total=total, limit=limit, offset=offset)


@endpoints_router.get("/{endpoint_id}/deliveries/{delivery_id}", response_model=DeliveryDetail)
async def get_delivery(
    endpoint_id: str,
    delivery_id: str,
    business_id: str = Depends(require_business),
    registry: EndpointRegistry = Depends(get_registry),
    recorder: DeliveryRecorder = Depends(get_recorder),
):
    await _get_endpoint_or_404(registry, business_id, endpoint_id)
    delivery = await recorder.get(delivery_id, endpoint_id=endpoint_id)
    if not delivery:
        raise HTTPException(404, "Webhook delivery not found")
    return DeliveryDetail.model_validate(delivery)
