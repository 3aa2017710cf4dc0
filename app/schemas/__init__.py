"""Pydantic schemas for API request/response."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


# ── Business ─────────────────────────────────────────────
class BusinessCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)


class BusinessOut(BaseModel):
    id: str
    name: str
    created_at: datetime

    model_config = {"from_attributes": True}


class EventTrigger(BaseModel):
    event: str
    data: dict[str, Any] = Field(default_factory=dict)


# ── Webhook endpoints ────────────────────────────────────
class WebhookCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    url: str
    events: list[str] = Field(default_factory=list)


class WebhookUpdate(BaseModel):
    name: Optional[str] = None
    url: Optional[str] = None
    events: Optional[list[str]] = None
    active: Optional[bool] = None


class WebhookOut(BaseModel):
    """Endpoint as listed. Never carries the secret."""

    id: str
    business_id: str
    name: str
    url: str
    events: list[str]
    active: bool
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, wh):
        return cls(
            id=wh.id,
            business_id=wh.business_id,
            name=wh.name,
            url=wh.url,
            events=wh.event_list,
            active=bool(wh.active),
            created_at=wh.created_at,
            updated_at=wh.updated_at,
        )


class WebhookListOut(BaseModel):
    endpoints: list[WebhookOut]
    available_events: list[str]


class WebhookCreatedOut(WebhookOut):
    secret: str
    message: str = "Webhook endpoint created. Save the secret - it will not be shown again."


class SecretOut(BaseModel):
    id: str
    secret: str
    message: str = "Secret regenerated. Save it - it will not be shown again."


class DeliveryTestOut(BaseModel):
    success: bool
    status_code: int
    message: str


# ── Delivery log ─────────────────────────────────────────
class DeliverySummary(BaseModel):
    """List view of one attempt; payload and response body are left out."""

    id: str
    endpoint_id: str
    event_type: str
    status_code: Optional[int] = None
    success: bool
    attempt: int
    duration_ms: int = 0
    delivered_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class DeliveryDetail(DeliverySummary):
    payload: str
    response: Optional[str] = None


class DeliveryPage(BaseModel):
    deliveries: list[DeliverySummary]
    total: int
    limit: int
    offset: int
