"""
MeshGate — Service Process Bootstrap
====================================

What:  Entry points for the two backend service processes.
How:   Builds the database, transport clients, services and handlers for one
       service, validates its routing table, then serves until interrupted.
       Shutdown closes outbound clients and disposes the engine.

Console scripts (see pyproject.toml):
    meshgate-user-service          → listens on USER_SERVICE_PORT (4001)
    meshgate-notification-service  → listens on NOTIFICATION_SERVICE_PORT (4003)

Startup sequence:
    1. Configure logging
    2. Create tables when DB_AUTO_CREATE is on (Alembic otherwise)
    3. Wire services → handlers → router
    4. router.validate() (inside MessageServer.start); an incomplete table
       aborts startup with ConfigurationError
"""

import asyncio
import logging

from meshgate.config import settings
from meshgate.database import Database
from meshgate.handlers.notifications import NotificationHandlers
from meshgate.handlers.users import UserHandlers
from meshgate.logging_config import setup_logging
from meshgate.messaging.client import TransportClient
from meshgate.messaging.events import EventEmitter
from meshgate.messaging.patterns import Service
from meshgate.messaging.router import MessageRouter
from meshgate.messaging.server import MessageServer
from meshgate.services.email_service import EmailService
from meshgate.services.notification_service import NotificationService
from meshgate.services.user_directory import UserDirectory
from meshgate.services.user_service import UserService

logger = logging.getLogger(__name__)


def notification_client() -> TransportClient:
    return TransportClient(
        settings.notification_service_host,
        settings.notification_service_port,
        name="notification-service",
    )


def user_client() -> TransportClient:
    return TransportClient(
        settings.user_service_host,
        settings.user_service_port,
        name="user-service",
    )


def build_user_router(database: Database, notifications: TransportClient) -> MessageRouter:
    handlers = UserHandlers(
        database=database,
        service=UserService(notifications=notifications),
        emitter=EventEmitter(notifications),
    )
    return handlers.register(MessageRouter(Service.USER))


def build_notification_router(
    database: Database,
    users: TransportClient,
    mailer: EmailService,
) -> MessageRouter:
    handlers = NotificationHandlers(
        database=database,
        service=NotificationService(mailer=mailer, directory=UserDirectory(users)),
        emitter=EventEmitter(users),
    )
    return handlers.register(MessageRouter(Service.NOTIFICATION))


async def _serve(database: Database, router: MessageRouter, port: int, client: TransportClient) -> None:
    if settings.db_auto_create:
        await database.create_all()

    server = MessageServer(router, settings.service_bind_host, port)
    try:
        await server.serve_forever()
    finally:
        await client.close()
        await database.dispose()


async def run_user_service() -> None:
    database = Database(settings.user_database_url)
    notifications = notification_client()
    router = build_user_router(database, notifications)
    await _serve(database, router, settings.user_service_port, notifications)


async def run_notification_service() -> None:
    try:
        settings.validate_required_for_production()
    except ValueError as e:
        logger.warning("%s", e)

    database = Database(settings.notification_database_url)
    users = user_client()
    router = build_notification_router(database, users, EmailService())
    await _serve(database, router, settings.notification_service_port, users)


def _run(service: str, main) -> None:
    setup_logging(service)
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("%s shutting down", service)


def user_service_main() -> None:
    _run("user-service", run_user_service)


def notification_service_main() -> None:
    _run("notification-service", run_notification_service)
