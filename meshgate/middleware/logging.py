"""
MeshGate — Request Logging Middleware
======================================

What:  One log line per gateway request, keyed by the matched route template
       (`/users/{user_id}`, not `/users/42`) so lines group per endpoint.
When:  After RequestIDMiddleware, so the request ID is already set.

Request bodies are never logged (they carry passwords).
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from meshgate.middleware.request_id import request_id_var

logger = logging.getLogger("meshgate.access")

QUIET_PATHS = frozenset({"/health", "/docs", "/openapi.json"})


def level_for_status(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


def route_template(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Access log for the gateway; downstream failures show up as ERROR lines."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in QUIET_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)

        endpoint = route_template(request)
        peer = request.client.host if request.client else "unknown"
        logger.log(
            level_for_status(response.status_code),
            "%s %s -> %d in %.1fms (peer %s)",
            request.method,
            endpoint,
            response.status_code,
            elapsed_ms,
            peer,
            extra={
                "endpoint": endpoint,
                "status": response.status_code,
                "duration_ms": elapsed_ms,
                "request_id": request_id_var.get("") or "-",
            },
        )
        return response
