"""Delivery worker — per-endpoint retry state machine for one dispatch.

    ATTEMPT(1) -> SUCCESS
               -> RETRY -> ATTEMPT(2) -> ... -> ATTEMPT(max) -> EXHAUSTED

Every attempt is recorded. Errors never leave the worker.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import httpx

from app.services.webhook_recorder import AttemptOutcome, DeliveryRecorder
from app.services.webhook_signer import sign_payload

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAYS = (1, 5, 30)  # seconds after attempt 1, 2, 3


class DeliveryState(str, Enum):
    ATTEMPT = "attempt"
    RETRY = "retry"
    SUCCESS = "success"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class EndpointTarget:
    """Snapshot of the endpoint fields a delivery needs, detached from the session."""

    id: str
    url: str
    secret: str

    @classmethod
    def from_model(cls, endpoint) -> "EndpointTarget":
        return cls(id=endpoint.id, url=endpoint.url, secret=endpoint.secret)


def build_headers(
    signature: str,
    event_type: str,
    timestamp: str,
    attempt: int,
    user_agent: str,
) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "X-Webhook-Signature": signature,
        "X-Webhook-Event": event_type,
        "X-Webhook-Timestamp": timestamp,
        "X-Webhook-Attempt": str(attempt),
        "User-Agent": user_agent,
    }


async def post_signed(
    client: httpx.AsyncClient,
    target: EndpointTarget,
    body: bytes,
    event_type: str,
    timestamp: str,
    attempt: int,
    timeout: float,
    user_agent: str,
) -> AttemptOutcome:
    """Sign and POST one request. Any failure to get a response becomes a status 0 outcome."""
    signature = sign_payload(body, target.secret)
    headers = build_headers(signature, event_type, timestamp, attempt, user_agent)

    start = time.monotonic()
    try:
        resp = await client.post(
            target.url,
            content=body,
            headers=headers,
            # pool=None: a busy pool delays the attempt instead of failing it
            timeout=httpx.Timeout(timeout, pool=None),
        )
    except Exception as exc:
        # httpx errors, but also e.g. IDNA ValueErrors raised while building the request
        return AttemptOutcome(
            attempt=attempt,
            status_code=0,
            response=str(exc) or exc.__class__.__name__,
            success=False,
            duration_ms=int((time.monotonic() - start) * 1000),
        )
    return AttemptOutcome(
        attempt=attempt,
        status_code=resp.status_code,
        response=resp.text,
        success=200 <= resp.status_code < 300,
        duration_ms=int((time.monotonic() - start) * 1000),
    )


class DeliveryWorker:
    """Delivers one envelope to one endpoint, retrying on a fixed backoff table."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        recorder: DeliveryRecorder,
        target: EndpointTarget,
        event_type: str,
        body: bytes,
        timestamp: str,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delays: Sequence[float] = DEFAULT_RETRY_DELAYS,
        timeout: float = 10.0,
        user_agent: str = "Webhooks/1.0",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.client = client
        self.recorder = recorder
        self.target = target
        self.event_type = event_type
        self.body = body
        self.timestamp = timestamp
        self.max_attempts = max_attempts
        self.retry_delays = tuple(retry_delays)
        self.timeout = timeout
        self.user_agent = user_agent
        self.sleep = sleep

        self.state = DeliveryState.ATTEMPT
        self.attempt_number = 1
        self.outcomes: list[AttemptOutcome] = []

    def backoff_for(self, attempt: int) -> float:
        """Delay after a failed ``attempt``; the table's last entry covers overflow."""
        if not self.retry_delays:
            return 0
        index = min(attempt, len(self.retry_delays)) - 1
        return self.retry_delays[index]

    def transition(self, outcome: AttemptOutcome) -> DeliveryState:
        """Next state after an attempt's outcome is known."""
        if outcome.success:
            return DeliveryState.SUCCESS
        if outcome.attempt >= self.max_attempts:
            return DeliveryState.EXHAUSTED
        return DeliveryState.RETRY

    async def attempt(self) -> AttemptOutcome:
        """Run ATTEMPT(n): send, then record the outcome."""
        outcome = await post_signed(
            self.client,
            self.target,
            self.body,
            self.event_type,
            self.timestamp,
            self.attempt_number,
            self.timeout,
            self.user_agent,
        )
        self.outcomes.append(outcome)
        await self._record(outcome)
        return outcome

    async def _record(self, outcome: AttemptOutcome) -> None:
        try:
            await self.recorder.append(
                self.target.id,
                self.event_type,
                self.body.decode("utf-8"),
                outcome,
            )
        except Exception:
            logger.exception(
                f"Failed to record webhook attempt {outcome.attempt} for endpoint {self.target.id}"
            )

    async def run(self) -> DeliveryState:
        while self.state in (DeliveryState.ATTEMPT, DeliveryState.RETRY):
            if self.state is DeliveryState.RETRY:
                delay = self.backoff_for(self.attempt_number)
                logger.info(
                    f"Retrying webhook to {self.target.url} in {delay}s "
                    f"(attempt {self.attempt_number + 1}/{self.max_attempts})"
                )
                await self.sleep(delay)
                self.attempt_number += 1
                self.state = DeliveryState.ATTEMPT

            outcome = await self.attempt()
            self.state = self.transition(outcome)

            if self.state is DeliveryState.SUCCESS:
                logger.info(
                    f"Webhook delivered to {self.target.url} for event {self.event_type} "
                    f"(attempt {outcome.attempt})"
                )
            elif outcome.status_code:
                logger.warning(
                    f"Webhook delivery failed to {self.target.url}: HTTP {outcome.status_code}"
                )
            else:
                logger.warning(f"Webhook delivery error to {self.target.url}: {outcome.response}")

        if self.state is DeliveryState.EXHAUSTED:
            logger.error(
                f"Webhook to {self.target.url} for event {self.event_type} "
                f"failed after {self.max_attempts} attempts"
            )
        return self.state

    @property
    def last_outcome(self) -> Optional[AttemptOutcome]:
        return self.outcomes[-1] if self.outcomes else None
