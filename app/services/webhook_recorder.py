"""Delivery recorder — append-only audit log of webhook attempts."""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models import utcnow
from app.models.webhook import WebhookDelivery
from app.schemas import DeliverySummary

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class AttemptOutcome:
    """Result of one HTTP try, as handed to the recorder."""

    attempt: int
    status_code: int  # 0 = transport failure
    response: str
    success: bool
    duration_ms: int = 0


class DeliveryRecorder:
    """Writes and reads WebhookDelivery rows.

    Each call runs in its own session so concurrent workers never share
    a transaction; rows are inserted once and never updated.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], response_limit: int = 5000):
        self.session_factory = session_factory
        self.response_limit = response_limit

    async def append(
        self,
        endpoint_id: str,
        event_type: str,
        payload: str,
        outcome: AttemptOutcome,
    ) -> WebhookDelivery:
        delivery = WebhookDelivery(
            endpoint_id=endpoint_id,
            event_type=event_type,
            payload=payload,
            attempt=outcome.attempt,
            status_code=outcome.status_code,
            response=(outcome.response or "")[: self.response_limit] or None,
            success=outcome.success,
            duration_ms=outcome.duration_ms,
            delivered_at=utcnow() if outcome.success else None,
        )
        async with self.session_factory() as db:
            db.add(delivery)
            await db.commit()
        return delivery

    async def query(
        self,
        endpoint_id: str,
        event_type: Optional[str] = None,
        success: Optional[bool] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[DeliverySummary], int]:
        """Newest-first page of attempts for one endpoint, plus the filtered total."""
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        offset = max(0, offset)

        conditions = [WebhookDelivery.endpoint_id == endpoint_id]
        if event_type is not None:
            conditions.append(WebhookDelivery.event_type == event_type)
        if success is not None:
            conditions.append(WebhookDelivery.success.is_(success))

        async with self.session_factory() as db:
            total = await db.scalar(
                select(func.count()).select_from(WebhookDelivery).where(*conditions)
            )
            stmt = (
                select(WebhookDelivery)
                .where(*conditions)
                # rows written in the same instant keep attempt order
                .order_by(WebhookDelivery.created_at.desc(), WebhookDelivery.attempt.desc())
                .offset(offset)
                .limit(limit)
            )
            rows = (await db.execute(stmt)).scalars().all()

        return [DeliverySummary.model_validate(r) for r in rows], total or 0

    async def get(self, delivery_id: str, endpoint_id: Optional[str] = None) -> Optional[WebhookDelivery]:
        """Full attempt record including payload and stored response excerpt."""
        stmt = select(WebhookDelivery).where(WebhookDelivery.id == delivery_id)
        if endpoint_id is not None:
            stmt = stmt.where(WebhookDelivery.endpoint_id == endpoint_id)
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            return result.scalar_one_or_none()
