"""Webhook models for outbound event delivery."""

import json
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text

from app.database import Base
from app.models import new_uuid, utcnow


class WebhookEvent(str, Enum):
    BOOKING_CREATED = "booking.created"
    BOOKING_UPDATED = "booking.updated"
    BOOKING_CANCELLED = "booking.cancelled"
    BOOKING_CONFIRMED = "booking.confirmed"
    ORDER_CREATED = "order.created"
    ORDER_UPDATED = "order.updated"
    ORDER_COMPLETED = "order.completed"
    ORDER_CANCELLED = "order.cancelled"
    CONVERSATION_CREATED = "conversation.created"
    CONVERSATION_ENDED = "conversation.ended"
    CONVERSATION_HANDOFF = "conversation.handoff"


WEBHOOK_EVENTS = [e.value for e in WebhookEvent]

# Sent only by the operator-triggered test delivery, never subscribable
TEST_EVENT = "webhook.test"


class WebhookEndpoint(Base):
    """Business-owned URL subscribed to one or more event types."""

    __tablename__ = "webhook_endpoints"

    id = Column(String(36), primary_key=True, default=new_uuid)
    business_id = Column(String(36), ForeignKey("businesses.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    url = Column(String(2048), nullable=False)
    secret = Column(String(200), nullable=False)  # HMAC signing secret, shown once
    events = Column(Text, default="[]")  # JSON list of subscribed event types
    active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def event_list(self) -> list[str]:
        events = self.events
        if isinstance(events, str):
            try:
                events = json.loads(events)
            except (json.JSONDecodeError, TypeError):
                events = []
        return list(events or [])

    def subscribes_to(self, event_type: str) -> bool:
        return event_type in self.event_list


class WebhookDelivery(Base):
    """One immutable row per delivery attempt. Never updated after insert."""

    __tablename__ = "webhook_deliveries"
    __table_args__ = (
        Index("ix_webhook_deliveries_endpoint_created", "endpoint_id", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=new_uuid)
    # No FK: rows may outlive their endpoint (see webhook_keep_deliveries_on_delete)
    endpoint_id = Column(String(36), nullable=False, index=True)
    event_type = Column(String(100), nullable=False)
    payload = Column(Text, default="{}")  # exact signed request body
    attempt = Column(Integer, default=1)
    status_code = Column(Integer, nullable=True)  # 0 = transport failure
    response = Column(Text, nullable=True)  # truncated at write time
    success = Column(Boolean, default=False)
    duration_ms = Column(Integer, default=0)
    delivered_at = Column(DateTime, nullable=True)  # set iff success
    created_at = Column(DateTime, default=utcnow)
