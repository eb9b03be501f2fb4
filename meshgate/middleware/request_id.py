"""
MeshGate — Request ID Middleware
=================================

What:  Assigns a short correlation ID to every gateway request.
How:   Reuses the caller's X-Request-ID header or generates one, stores it in
       a ContextVar, and echoes it back in the response headers.
Who:   Applied to every gateway request. The same ContextVar is read by the
       transport client (which copies the ID into outgoing frames) and set by
       the message server (which restores it for the handler), so one ID
       follows a call from the gateway through both services' logs.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local: concurrent requests on one event loop each see their own ID
request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def new_request_id() -> str:
    """Short random ID, long enough to correlate log lines."""
    return str(uuid.uuid4())[:8]


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Behavior:
        1. Use the client's X-Request-ID header when present
        2. Otherwise generate a new short ID
        3. Store it in the ContextVar and in request.state
        4. Add it to the response headers
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get("X-Request-ID") or new_request_id()

        request_id_var.set(rid)
        request.state.request_id = rid

        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response
