"""
MeshGate — User Schemas
=======================

What:  Pydantic contracts for every user.* message pattern and the matching
       gateway routes.
How:   Request models validate the payload on both sides of the wire (the
       gateway before sending, the user service again on receipt). Response
       models are built from ORM rows with `from_attributes`.

The password field exists only on the request side; no response model has it.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, model_validator

from meshgate.schemas.notification import NotificationSummary


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class CreateUserRequest(BaseModel):
    """Body of POST /users and POST /registration."""

    first_name: str = Field(min_length=2, max_length=100)
    last_name: str = Field(min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)


class CreateUserCommand(CreateUserRequest):
    """
    Payload of `user.create`.

    Adds the saga fields the registration orchestrator sets. Both travel into
    the UserCreatedEvent unchanged.
    """

    correlation_id: Optional[str] = Field(default=None, max_length=64)
    welcome_requested_directly: bool = Field(default=False)


class GetUserRequest(BaseModel):
    id: int


class GetUserByEmailRequest(BaseModel):
    email: str = Field(min_length=1)


class UserQuery(BaseModel):
    """
    Payload of `user.advanced_query`.

    search:         substring matched against first name, last name and email
    created_after:  lower bound on created_at (inclusive)
    """

    search: Optional[str] = Field(default=None, max_length=255)
    created_after: Optional[datetime] = None
    limit: int = Field(default=50, ge=1, le=100)
    offset: int = Field(default=0, ge=0)


class SimilarNamesRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)


class DateRange(BaseModel):
    """Inclusive [start_date, end_date] window."""

    start_date: datetime
    end_date: datetime

    @model_validator(mode="after")
    def check_order(self) -> "DateRange":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be earlier than start_date")
        return self


class WithNotificationsRequest(BaseModel):
    limit: int = Field(default=50, ge=1, le=100)


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class UserResponse(BaseModel):
    """Public projection of a user. Never carries the password hash."""

    id: int
    email: str
    first_name: str
    last_name: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class MonthCount(BaseModel):
    month: str = Field(description="YYYY-MM")
    count: int


class UserStatsResponse(BaseModel):
    total_users: int
    users_this_month: int
    users_by_month: List[MonthCount] = Field(
        default_factory=list,
        description="Registrations per month over the trailing 12 months",
    )


class UserWithNotifications(UserResponse):
    notification_count: int = 0
    notifications: List[NotificationSummary] = Field(default_factory=list)
