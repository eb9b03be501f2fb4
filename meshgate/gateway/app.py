"""
MeshGate — Gateway Application Factory
======================================

What:  Creates and configures the FastAPI gateway.
How:   create_app() assembles middleware, exception handlers and routes. The
       lifespan opens one TransportClient per backend service and builds the
       GatewayDispatcher and RegistrationOrchestrator on app.state.
Who:   uvicorn meshgate.gateway.app:app  (or the meshgate-gateway script)

Application Architecture:
    ┌──────────────────────────────────────────────────────┐
    │                   FastAPI Gateway                     │
    │                                                       │
    │  Middleware:  RequestID → Logging → GZip → CORS       │
    │                                                       │
    │  Routes:  /users/*   /notifications/*                 │
    │           /registration   /health                     │
    │                                                       │
    │  Exception Handlers:                                  │
    │    ValidationError → 400 │ GatewayError → 500         │
    │    MeshError → 500       │ Exception → 500            │
    └───────────────┬──────────────────────┬────────────────┘
                    │ TCP :4001            │ TCP :4003
              user service         notification service
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from meshgate import __version__
from meshgate.config import settings
from meshgate.exceptions import GatewayError, MeshError, ValidationError
from meshgate.gateway.dispatcher import GatewayDispatcher
from meshgate.gateway.registration import RegistrationOrchestrator
from meshgate.gateway.routes import health, notifications, registration, users
from meshgate.logging_config import setup_logging
from meshgate.messaging.client import TransportClient
from meshgate.messaging.patterns import Service
from meshgate.middleware.logging import RequestLoggingMiddleware
from meshgate.middleware.request_id import RequestIDMiddleware, request_id_var

logger = logging.getLogger(__name__)


def default_dispatcher() -> GatewayDispatcher:
    return GatewayDispatcher({
        Service.USER: TransportClient(
            settings.user_service_host, settings.user_service_port, name="user-service"
        ),
        Service.NOTIFICATION: TransportClient(
            settings.notification_service_host, settings.notification_service_port, name="notification-service"
        ),
    })


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def register_exception_handlers(app: FastAPI) -> None:
    """
    Handler hierarchy:
        ValidationError  → 400 Bad Request
        GatewayError     → 500, downstream message embedded
        MeshError        → 500 (anything else of ours)
        Exception        → 500, generic message, traceback logged
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        rid = request_id_var.get("")
        logger.warning("Validation error: %s", exc.message)
        return JSONResponse(
            status_code=400,
            content={
                "error": exc.code,
                "message": exc.message,
                "details": exc.context,
                "request_id": rid,
            },
        )

    @app.exception_handler(GatewayError)
    async def handle_gateway_error(request: Request, exc: GatewayError):
        rid = request_id_var.get("")
        return JSONResponse(
            status_code=500,
            content={
                "error": exc.code,
                "message": exc.message,
                "details": exc.context,
                "request_id": rid,
            },
        )

    @app.exception_handler(MeshError)
    async def handle_mesh_error(request: Request, exc: MeshError):
        rid = request_id_var.get("")
        logger.error("%s: %s | Context: %s", type(exc).__name__, exc.message, exc.context)
        return JSONResponse(
            status_code=500,
            content={
                "error": exc.code,
                "message": exc.message,
                "request_id": rid,
            },
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = request_id_var.get("")
        logger.error("Unexpected error: %s", exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred. Please try again or contact support.",
                "request_id": rid,
            },
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(dispatcher_factory: Optional[Callable[[], GatewayDispatcher]] = None) -> FastAPI:
    """
    Args:
        dispatcher_factory: Builds the dispatcher at startup (defaults to
                            one TCP client per configured backend service)
    """
    factory = dispatcher_factory or default_dispatcher

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # ── Startup ───────────────────────────────────────────────────────
        setup_logging("gateway")
        logger.info("MeshGate gateway starting up (registration mode: %s)", settings.registration_mode)

        dispatcher = factory()
        app.state.dispatcher = dispatcher
        app.state.orchestrator = RegistrationOrchestrator(dispatcher)
        logger.info("Gateway ready at http://%s:%d", settings.gateway_host, settings.gateway_port)

        yield

        # ── Shutdown ──────────────────────────────────────────────────────
        logger.info("MeshGate gateway shutting down...")
        await dispatcher.close()
        logger.info("Shutdown complete.")

    app = FastAPI(
        title="MeshGate API",
        description="API gateway for the user and notification services.",
        version=__version__,
        lifespan=lifespan,
    )

    # Executes in reverse order of addition: RequestID → Logging → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(users.router)
    app.include_router(notifications.router)
    app.include_router(registration.router)
    app.include_router(health.router)

    return app


def main() -> None:
    import uvicorn

    uvicorn.run("meshgate.gateway.app:app", host=settings.gateway_host, port=settings.gateway_port)


app = create_app()
