"""
MeshGate — Domain Event Payloads
================================

What:  The two fire-and-forget events exchanged between the backend services.

    user.created       user service ──▶ notification service
    notification.sent  notification service ──▶ user service

Events are immutable once built. Timestamps are UTC and serialized as
ISO 8601 strings on the wire.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserCreatedEvent(BaseModel):
    """
    Published after a user row is committed.

    welcome_requested_directly is True when the gateway will request the
    welcome notification itself; subscribers then skip sending a second one.
    """

    user_id: int
    email: str
    first_name: str
    last_name: str
    timestamp: datetime = Field(default_factory=_utcnow)
    correlation_id: Optional[str] = None
    welcome_requested_directly: bool = False

    model_config = {"frozen": True}


class NotificationSentEvent(BaseModel):
    """Published after a delivery attempt settles (sent or failed)."""

    notification_id: uuid.UUID
    user_id: str
    type: str
    status: str
    timestamp: datetime = Field(default_factory=_utcnow)
    correlation_id: Optional[str] = None

    model_config = {"frozen": True}
