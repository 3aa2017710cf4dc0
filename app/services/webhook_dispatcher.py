"""Webhook dispatch service — fans domain events out to subscribed endpoints.

``trigger`` only resolves endpoints and schedules one delivery task per
match; delivery outcomes are visible through the delivery log alone.
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from fastapi import Request

from app.config import Settings
from app.models.webhook import TEST_EVENT, WEBHOOK_EVENTS
from app.services.webhook_recorder import DeliveryRecorder
from app.services.webhook_registry import EndpointRegistry
from app.services.webhook_worker import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_RETRY_DELAYS,
    DeliveryWorker,
    EndpointTarget,
    post_signed,
)

logger = logging.getLogger(__name__)


def iso_timestamp(now: Optional[datetime] = None) -> str:
    """UTC ISO-8601 with millisecond precision and a ``Z`` suffix."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class EventEnvelope:
    """The body shared by every endpoint and every retry of one dispatch."""

    event: str
    timestamp: str
    business_id: str
    data: Any
    body: bytes

    @classmethod
    def build(cls, business_id: str, event: str, data: Any, timestamp: Optional[str] = None) -> "EventEnvelope":
        timestamp = timestamp or iso_timestamp()
        body = json.dumps(
            {"event": event, "timestamp": timestamp, "businessId": business_id, "data": data},
            separators=(",", ":"),
            default=str,
            # NaN/Infinity are not JSON; raise ValueError instead of emitting them
            allow_nan=False,
        ).encode("utf-8")
        return cls(event=event, timestamp=timestamp, business_id=business_id, data=data, body=body)


class WebhookDispatcher:
    def __init__(
        self,
        registry: EndpointRegistry,
        recorder: DeliveryRecorder,
        client: httpx.AsyncClient,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delays: Sequence[float] = DEFAULT_RETRY_DELAYS,
        timeout: float = 10.0,
        user_agent: str = "Webhooks/1.0",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.registry = registry
        self.recorder = recorder
        self.client = client
        self.max_attempts = max_attempts
        self.retry_delays = tuple(retry_delays)
        self.timeout = timeout
        self.user_agent = user_agent
        self.sleep = sleep
        self._tasks: set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        registry: EndpointRegistry,
        recorder: DeliveryRecorder,
        client: httpx.AsyncClient,
    ) -> "WebhookDispatcher":
        return cls(
            registry,
            recorder,
            client,
            max_attempts=settings.webhook_max_attempts,
            retry_delays=settings.webhook_retry_delays,
            timeout=settings.webhook_timeout_seconds,
            user_agent=settings.webhook_user_agent,
        )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def trigger(self, business_id: str, event_type: str, data: Any) -> Optional[EventEnvelope]:
        """Schedule delivery of ``event_type`` to the business's endpoints.

        Returns once deliveries are scheduled, never after they finish.
        Returns the shared envelope, or None when nothing was scheduled.
        """
        if event_type not in WEBHOOK_EVENTS:
            raise ValueError(f"Unknown webhook event: {event_type}")

        try:
            endpoints = await self.registry.list_active_endpoints(business_id, event_type)
        except Exception:
            logger.exception(f"Error resolving webhooks for business {business_id} ({event_type})")
            return None

        if not endpoints:
            return None

        try:
            envelope = EventEnvelope.build(business_id, event_type, data)
        except ValueError:
            logger.exception(f"Cannot serialize {event_type} payload for business {business_id}")
            return None

        for endpoint in endpoints:
            worker = self.make_worker(EndpointTarget.from_model(endpoint), envelope)
            self._spawn(worker)
        logger.info(f"Dispatching {event_type} for business {business_id} to {len(endpoints)} endpoint(s)")
        return envelope

    def make_worker(self, target: EndpointTarget, envelope: EventEnvelope) -> DeliveryWorker:
        return DeliveryWorker(
            self.client,
            self.recorder,
            target,
            envelope.event,
            envelope.body,
            envelope.timestamp,
            max_attempts=self.max_attempts,
            retry_delays=self.retry_delays,
            timeout=self.timeout,
            user_agent=self.user_agent,
            sleep=self.sleep,
        )

    def _spawn(self, worker: DeliveryWorker) -> asyncio.Task:
        task = asyncio.create_task(self._run(worker))
        # the loop only keeps weak references to tasks
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, worker: DeliveryWorker) -> None:
        try:
            await worker.run()
        except Exception:
            logger.exception(f"Webhook worker for endpoint {worker.target.id} crashed")

    async def drain(self) -> None:
        """Wait for every in-flight delivery sequence to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def send_test(self, business_id: str, endpoint) -> dict:
        """Send one signed synthetic event and report the immediate outcome.

        Not retried and not written to the delivery log.
        """
        timestamp = iso_timestamp()
        data = {
            "test": True,
            "message": "This is a test webhook delivery",
            "timestamp": timestamp,
        }
        envelope = EventEnvelope.build(business_id, TEST_EVENT, data, timestamp=timestamp)
        outcome = await post_signed(
            self.client,
            EndpointTarget.from_model(endpoint),
            envelope.body,
            envelope.event,
            envelope.timestamp,
            1,
            self.timeout,
            self.user_agent,
        )
        if outcome.success:
            message = "Test webhook delivered successfully"
        elif outcome.status_code:
            message = f"Webhook delivery failed with HTTP {outcome.status_code}"
        else:
            message = f"Failed to connect: {outcome.response}"
        return {"success": outcome.success, "status_code": outcome.status_code, "message": message}


def get_dispatcher(request: Request) -> WebhookDispatcher:
    return request.app.state.dispatcher
