"""
MeshGate — Notification Schemas
===============================

What:  Pydantic contracts for the notification.* message patterns and the
       /notifications routes.
"""

import uuid
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

NotificationStatus = Literal["pending", "sent", "failed"]

WELCOME_TYPE = "welcome"
WELCOME_MESSAGE = "Welcome {first_name}! Your account has been created successfully."


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class SendNotificationRequest(BaseModel):
    """
    Payload of `notification.send` (and body of POST /notifications/send).

    correlation_id is set by the user.created event path so the registration
    orchestrator can find the welcome notification it is waiting for.
    """

    user_id: str = Field(min_length=1, max_length=64)
    type: str = Field(min_length=1, max_length=50)
    message: str = Field(min_length=1)
    correlation_id: Optional[str] = Field(default=None, max_length=64)


class NotificationStatusRequest(BaseModel):
    # Kept as a string: malformed ids are a miss, not a validation error
    id: str


class NotificationsByUserRequest(BaseModel):
    user_id: str = Field(min_length=1)
    limit: int = Field(default=10, ge=1, le=100)


class NotificationQuery(BaseModel):
    """Payload of `notification.advanced_query`. All filters are ANDed."""

    user_id: Optional[str] = None
    type: Optional[str] = None
    status: Optional[NotificationStatus] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    limit: int = Field(default=50, ge=1, le=100)
    offset: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def check_range(self) -> "NotificationQuery":
        if self.date_from and self.date_to and self.date_to < self.date_from:
            raise ValueError("date_to must not be earlier than date_from")
        return self


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class NotificationResponse(BaseModel):
    id: uuid.UUID
    user_id: str
    type: str
    message: str
    status: NotificationStatus
    created_at: datetime
    sent_at: Optional[datetime] = None
    correlation_id: Optional[str] = None

    model_config = {"from_attributes": True}


class NotificationSummary(BaseModel):
    """Compact row embedded in user.with_notifications results."""

    id: uuid.UUID
    type: str
    message: str
    status: NotificationStatus
    created_at: datetime

    model_config = {"from_attributes": True}


class DayCount(BaseModel):
    date: str = Field(description="YYYY-MM-DD")
    count: int


class NotificationStatsResponse(BaseModel):
    total: int
    sent: int
    failed: int
    pending: int
    by_type: Dict[str, int] = Field(default_factory=dict)
    by_day: List[DayCount] = Field(
        default_factory=list,
        description="Notifications per day over the trailing 30 days",
    )


class RetryFailedResponse(BaseModel):
    retried: int
    successful: int
    failed: int


class EmailTestResponse(BaseModel):
    success: bool
    message: str
