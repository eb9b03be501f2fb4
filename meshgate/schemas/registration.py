"""
MeshGate — Registration Summary
===============================

What:  Result of the registration saga (user creation + welcome notification).
"""

from typing import Literal, Optional

from pydantic import BaseModel, Field

RegistrationMode = Literal["direct", "event"]


class RegisteredUser(BaseModel):
    id: int
    email: str
    name: str


class RegisteredNotification(BaseModel):
    """
    status is the notification's own status (sent / failed / pending), or
    'unconfirmed' when the event path timed out waiting for it, or 'skipped'.
    """

    id: Optional[str] = None
    status: str


class RegistrationSummary(BaseModel):
    user: RegisteredUser
    notification: RegisteredNotification
    total_time: int = Field(description="Elapsed wall-clock milliseconds")
    mode: RegistrationMode
    state: str
