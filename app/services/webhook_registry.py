"""Endpoint registry — tenant-scoped webhook endpoint configuration."""

import json
import logging
from typing import Optional
from urllib.parse import urlparse

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.webhook import WEBHOOK_EVENTS, WebhookDelivery, WebhookEndpoint
from app.services.webhook_signer import generate_webhook_secret

logger = logging.getLogger(__name__)


def validate_url(url: str) -> str:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("Invalid URL format")
    return url


def filter_events(events: Optional[list[str]]) -> list[str]:
    """Keep known event types in order, dropping unknowns and duplicates."""
    valid = []
    for evt in events or []:
        if evt in WEBHOOK_EVENTS and evt not in valid:
            valid.append(evt)
    if not valid:
        raise ValueError("At least one valid event is required")
    return valid


class EndpointRegistry:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        keep_deliveries_on_delete: bool = True,
    ):
        self.session_factory = session_factory
        self.keep_deliveries_on_delete = keep_deliveries_on_delete

    async def list_active_endpoints(self, business_id: str, event_type: str) -> list[WebhookEndpoint]:
        """Active endpoints of a business subscribed to ``event_type``."""
        stmt = select(WebhookEndpoint).where(
            WebhookEndpoint.business_id == business_id,
            WebhookEndpoint.active.is_(True),
        )
        async with self.session_factory() as db:
            endpoints = (await db.execute(stmt)).scalars().all()
        # events is JSON text for SQLite/PostgreSQL portability, so match in Python
        return [ep for ep in endpoints if ep.subscribes_to(event_type)]

    async def list_endpoints(self, business_id: str) -> list[WebhookEndpoint]:
        stmt = (
            select(WebhookEndpoint)
            .where(WebhookEndpoint.business_id == business_id)
            .order_by(WebhookEndpoint.created_at.desc())
        )
        async with self.session_factory() as db:
            return list((await db.execute(stmt)).scalars().all())

    async def get_endpoint(self, business_id: str, endpoint_id: str) -> Optional[WebhookEndpoint]:
        stmt = select(WebhookEndpoint).where(
            WebhookEndpoint.id == endpoint_id,
            WebhookEndpoint.business_id == business_id,
        )
        async with self.session_factory() as db:
            return (await db.execute(stmt)).scalar_one_or_none()

    async def create_endpoint(
        self, business_id: str, name: str, url: str, events: list[str]
    ) -> tuple[WebhookEndpoint, str]:
        """Create an endpoint. The returned secret is the only time it is exposed."""
        validate_url(url)
        valid_events = filter_events(events)
        secret = generate_webhook_secret()

        endpoint = WebhookEndpoint(
            business_id=business_id,
            name=name,
            url=url,
            secret=secret,
            events=json.dumps(valid_events),
            active=True,
        )
        async with self.session_factory() as db:
            db.add(endpoint)
            await db.commit()
            await db.refresh(endpoint)
        logger.info(f"Webhook endpoint {endpoint.id} created for business {business_id}")
        return endpoint, secret

    async def update_endpoint(
        self,
        business_id: str,
        endpoint_id: str,
        name: Optional[str] = None,
        url: Optional[str] = None,
        events: Optional[list[str]] = None,
        active: Optional[bool] = None,
    ) -> Optional[WebhookEndpoint]:
        if url is not None:
            validate_url(url)
        valid_events = filter_events(events) if events is not None else None

        async with self.session_factory() as db:
            result = await db.execute(
                select(WebhookEndpoint).where(
                    WebhookEndpoint.id == endpoint_id,
                    WebhookEndpoint.business_id == business_id,
                )
            )
            endpoint = result.scalar_one_or_none()
            if not endpoint:
                return None
            if name is not None:
                endpoint.name = name
            if url is not None:
                endpoint.url = url
            if valid_events is not None:
                endpoint.events = json.dumps(valid_events)
            if active is not None:
                endpoint.active = active
            await db.commit()
            await db.refresh(endpoint)
        return endpoint

    async def regenerate_secret(self, business_id: str, endpoint_id: str) -> Optional[str]:
        """Replace the signing secret. Later dispatches sign with the new one."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(WebhookEndpoint).where(
                    WebhookEndpoint.id == endpoint_id,
                    WebhookEndpoint.business_id == business_id,
                )
            )
            endpoint = result.scalar_one_or_none()
            if not endpoint:
                return None
            secret = generate_webhook_secret()
            endpoint.secret = secret
            await db.commit()
        logger.info(f"Webhook secret regenerated for endpoint {endpoint_id}")
        return secret

    async def delete_endpoint(self, business_id: str, endpoint_id: str) -> bool:
        async with self.session_factory() as db:
            result = await db.execute(
                select(WebhookEndpoint).where(
                    WebhookEndpoint.id == endpoint_id,
                    WebhookEndpoint.business_id == business_id,
                )
            )
            endpoint = result.scalar_one_or_none()
            if not endpoint:
                return False
            await db.delete(endpoint)
            if not self.keep_deliveries_on_delete:
                await db.execute(
                    delete(WebhookDelivery).where(WebhookDelivery.endpoint_id == endpoint_id)
                )
            await db.commit()
        logger.info(f"Webhook endpoint {endpoint_id} deleted")
        return True
