"""Webhook signing — HMAC-SHA256 signatures and endpoint secrets."""

import hashlib
import hmac
import secrets
from typing import Union

from app.config import get_settings

Payload = Union[bytes, str]


def _as_bytes(payload: Payload) -> bytes:
    return payload.encode("utf-8") if isinstance(payload, str) else payload


def sign_payload(payload: Payload, secret: str) -> str:
    """Generate HMAC-SHA256 hex signature over the exact bytes to be sent."""
    return hmac.new(secret.encode("utf-8"), _as_bytes(payload), hashlib.sha256).hexdigest()


def verify_signature(payload: Payload, signature: str, secret: str) -> bool:
    """Check a received signature in constant time.

    Receivers should pass the raw request body, not a re-serialized copy.
    """
    expected = sign_payload(payload, secret)
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


def generate_webhook_secret(prefix: str | None = None) -> str:
    """Return a fresh 256-bit secret, tagged so it can't be mistaken for an API key."""
    if prefix is None:
        prefix = get_settings().webhook_secret_prefix
    return f"{prefix}{secrets.token_hex(32)}"
