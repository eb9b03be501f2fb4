"""
MeshGate — Notification SQLAlchemy Model
=========================================

What:  ORM model for the `notifications` table, owned by the notification
       service.

Status lifecycle:
    pending ──▶ sent      (delivery succeeded, sent_at set)
       │
       └────▶ failed ──▶ sent   (a later retry succeeded)

    A row never returns to 'pending'. sent_at is only ever set together with
    status='sent'.

user_id is a string reference into the user service; nothing enforces it
across services.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from meshgate.database import Base

STATUS_PENDING = "pending"
STATUS_SENT = "sent"
STATUS_FAILED = "failed"
STATUSES = (STATUS_PENDING, STATUS_SENT, STATUS_FAILED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Notification(Base):
    """A single notification and its delivery state."""

    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    user_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Free-form tag; "welcome" selects the welcome email template
    type: Mapped[str] = mapped_column(String(50), nullable=False)

    message: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=STATUS_PENDING,
        comment="pending, sent, failed",
    )

    # Links a welcome notification to the registration saga that caused it
    correlation_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        default=None,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    sent_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        default=None,
    )

    __table_args__ = (
        Index("idx_notifications_user_id", "user_id"),
        Index("idx_notifications_status", "status"),
        Index("idx_notifications_created_at", "created_at"),
    )

    def mark_sent(self) -> None:
        self.status = STATUS_SENT
        self.sent_at = _utcnow()

    def mark_failed(self) -> None:
        self.status = STATUS_FAILED

    def __repr__(self) -> str:
        return (
            f"<Notification(id={self.id}, user_id='{self.user_id}', "
            f"type='{self.type}', status='{self.status}')>"
        )
