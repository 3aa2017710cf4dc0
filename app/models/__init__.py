"""SQLAlchemy models — portable across SQLite and PostgreSQL."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String

from app.database import Base


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


# ── Business ────────────────────────────────────────────
class Business(Base):
    """Tenant account. Owns webhook endpoints and receives its own events."""

    __tablename__ = "businesses"

    id = Column(String(36), primary_key=True, default=new_uuid)
    name = Column(String(200), nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


from app.models.webhook import WebhookDelivery, WebhookEndpoint, WebhookEvent  # noqa: E402,F401
