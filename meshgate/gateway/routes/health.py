"""
MeshGate — Health Check Route
=============================

What:  GET /health for container probes and load balancers.
How:   Opens (or reuses) the transport connection to each backend service.

Status levels:
    healthy:   every backend service accepted a connection
    degraded:  at least one did not (still HTTP 200; the gateway itself is up)
"""

import time

from fastapi import APIRouter, Depends

from meshgate import __version__
from meshgate.gateway.dependencies import get_dispatcher
from meshgate.gateway.dispatcher import GatewayDispatcher
from meshgate.schemas.common import HealthResponse

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get("/health", response_model=HealthResponse, summary="Gateway health check")
async def health_check(dispatcher: GatewayDispatcher = Depends(get_dispatcher)) -> HealthResponse:
    services = await dispatcher.probe()
    overall = "healthy" if all(s == "reachable" for s in services.values()) else "degraded"
    return HealthResponse(
        status=overall,
        version=__version__,
        services=services,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
