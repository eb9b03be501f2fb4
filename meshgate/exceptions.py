"""
MeshGate — Custom Exception Hierarchy
======================================

What:  Application-specific exceptions shared by the gateway and both services.
How:   Every exception carries a human-readable message, an optional context
       dict, and a machine-readable `code`. The code is what crosses the wire
       when a service handler fails, so the gateway can tell a conflict from a
       delivery failure without parsing messages.
Who:   Raised by services, handlers and the transport; caught by the message
       server (→ error frame) and by the gateway's global handlers (→ HTTP).

Exception Hierarchy:
    MeshError (base)
    ├── ValidationError          → 400 Bad Request
    ├── ConflictError            (duplicate email)
    ├── DeliveryFailureError     (email send failed)
    ├── DatabaseError            (unexpected persistence failure)
    ├── ConfigurationError       (incomplete routing tables, bad wiring)
    ├── TransportError           (gateway ↔ service calls)
    │   ├── TransportTimeoutError
    │   ├── ConnectionFailureError
    │   ├── FrameError           (malformed or oversized frame)
    │   └── RemoteServiceError   (handler failed on the other side)
    └── GatewayError             → 500 Internal Server Error

Lookups that miss are not errors: they return None.
"""

from typing import Any, Dict, Optional


class MeshError(Exception):
    """
    Base exception for all MeshGate errors.

    Attributes:
        message:  Description safe to return to callers
        context:  Extra debug info (logged, not returned over HTTP)
        code:     Stable machine-readable identifier
    """

    code = "mesh_error"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(MeshError):
    """
    Raised when caller input fails validation before reaching a handler.

    When:    Unparseable date ranges, bad pagination values, malformed payloads.
    HTTP:    400 Bad Request
    """

    code = "validation_error"

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class ConflictError(MeshError):
    """Raised when a user with the given email already exists."""

    code = "conflict"

    def __init__(
        self,
        message: str = "User with this email already exists",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DeliveryFailureError(MeshError):
    """
    Raised when an email could not be delivered.

    The notification row has already been marked 'failed' when this is raised.
    """

    code = "delivery_failure"

    def __init__(
        self,
        message: str = "Notification delivery failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseError(MeshError):
    """
    Raised when a database operation fails unexpectedly.

    The message stays generic; the original error type goes into context.
    """

    code = "database_error"

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ConfigurationError(MeshError):
    """Raised at startup when routing tables or wiring are incomplete."""

    code = "configuration_error"


class TransportError(MeshError):
    """Base class for failures of a gateway ↔ service call."""

    code = "transport_error"


class TransportTimeoutError(TransportError):
    """No response arrived within the per-call timeout."""

    code = "transport_timeout"

    def __init__(
        self,
        pattern: str,
        timeout: float,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx.update({"pattern": pattern, "timeout": timeout})
        super().__init__(
            message=f"Timed out after {timeout:g}s waiting for '{pattern}'",
            context=ctx,
        )
        self.pattern = pattern
        self.timeout = timeout


class ConnectionFailureError(TransportError):
    """The connection could not be established or was reset mid-call."""

    code = "connection_failure"

    def __init__(
        self,
        message: str = "Connection to service failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class FrameError(TransportError):
    """A frame could not be encoded or decoded (bad JSON, wrong shape, too large)."""

    code = "protocol_error"


class RemoteServiceError(TransportError):
    """
    The remote handler raised; carries its error code and message.

    `remote_code` is the `code` of the exception raised on the service side
    (e.g. 'conflict', 'delivery_failure', 'internal_error').
    """

    code = "remote_error"

    def __init__(
        self,
        message: str,
        remote_code: str = "internal_error",
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["remote_code"] = remote_code
        super().__init__(message=message, context=ctx)
        self.remote_code = remote_code


class GatewayError(MeshError):
    """
    Uniform gateway-facing error for any failed downstream call.

    HTTP:    500 Internal Server Error, downstream message embedded.
    """

    code = "downstream_error"

    def __init__(
        self,
        message: str,
        pattern: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if pattern:
            ctx["pattern"] = pattern
        super().__init__(message=message, context=ctx)
        self.pattern = pattern
