"""
MeshGate — Shared Gateway Response Models
=========================================
"""

from typing import Dict, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    Error body returned by every gateway exception handler.

    Example:
        {
            "error": "downstream_error",
            "message": "Failed to create user: User with this email already exists",
            "details": {"pattern": "user.create"},
            "request_id": "a1b2c3d4"
        }
    """

    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    """
    Gateway health: the gateway is 'healthy' when both backend services
    accept a connection, 'degraded' otherwise.
    """

    status: str = Field(description="healthy or degraded")
    version: str
    services: Dict[str, str] = Field(description="service name → reachable / unreachable")
    uptime_seconds: float
