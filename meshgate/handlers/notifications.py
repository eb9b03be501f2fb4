"""
MeshGate — Notification Service Handlers
========================================

What:  Binds every notification.* message pattern and the user.created event
       to NotificationService.

user.created:
    Sends the welcome notification (carrying the event's correlation id)
    unless the gateway already asked for it directly. Failures are logged,
    never raised. A NotificationSentEvent goes back to the user service for
    both outcomes.
"""

import logging
import uuid
from typing import Any, List, Optional

from meshgate.database import Database
from meshgate.exceptions import DeliveryFailureError, MeshError
from meshgate.messaging.events import EventEmitter
from meshgate.messaging.patterns import EventPattern, MessagePattern
from meshgate.messaging.router import MessageRouter
from meshgate.models.notification import STATUS_FAILED
from meshgate.schemas.events import NotificationSentEvent, UserCreatedEvent
from meshgate.schemas.notification import (
    WELCOME_TYPE,
    EmailTestResponse,
    NotificationQuery,
    NotificationResponse,
    NotificationStatsResponse,
    NotificationStatusRequest,
    NotificationsByUserRequest,
    RetryFailedResponse,
    SendNotificationRequest,
)
from meshgate.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


class NotificationHandlers:
    def __init__(self, database: Database, service: NotificationService, emitter: EventEmitter):
        self.database = database
        self.service = service
        self.emitter = emitter

    def register(self, router: MessageRouter) -> MessageRouter:
        router.add_handler(MessagePattern.NOTIFICATION_SEND, self.send)
        router.add_handler(MessagePattern.NOTIFICATION_STATUS, self.status)
        router.add_handler(MessagePattern.NOTIFICATION_BY_USER, self.by_user)
        router.add_handler(MessagePattern.NOTIFICATION_ADVANCED_QUERY, self.advanced_query)
        router.add_handler(MessagePattern.NOTIFICATION_STATS, self.stats)
        router.add_handler(MessagePattern.NOTIFICATION_FAILED, self.failed)
        router.add_handler(MessagePattern.NOTIFICATION_RETRY_FAILED, self.retry_failed)
        router.add_handler(MessagePattern.NOTIFICATION_TEST_EMAIL, self.test_email)
        router.add_subscriber(EventPattern.USER_CREATED, self.on_user_created)
        return router

    # ── Request/response ──────────────────────────────────────────────────

    async def send(self, data: Any) -> NotificationResponse:
        request = SendNotificationRequest.model_validate(data)
        async with self.database.session() as db:
            notification = await self.service.send_notification(db, request)
        await self._acknowledge(
            notification.id, notification.user_id, notification.type,
            notification.status, notification.correlation_id,
        )
        return notification

    async def status(self, data: Any) -> Optional[NotificationResponse]:
        request = NotificationStatusRequest.model_validate(data)
        async with self.database.session() as db:
            return await self.service.get_status(db, request.id)

    async def by_user(self, data: Any) -> List[NotificationResponse]:
        request = NotificationsByUserRequest.model_validate(data)
        async with self.database.session() as db:
            return await self.service.by_user(db, request.user_id, request.limit)

    async def advanced_query(self, data: Any) -> List[NotificationResponse]:
        query = NotificationQuery.model_validate(data or {})
        async with self.database.session() as db:
            return await self.service.advanced_query(db, query)

    async def stats(self, data: Any) -> NotificationStatsResponse:
        async with self.database.session() as db:
            return await self.service.stats(db)

    async def failed(self, data: Any) -> List[NotificationResponse]:
        async with self.database.session() as db:
            return await self.service.failed(db)

    async def retry_failed(self, data: Any) -> RetryFailedResponse:
        async with self.database.session() as db:
            return await self.service.retry_failed(db)

    async def test_email(self, data: Any) -> EmailTestResponse:
        return await self.service.test_email()

    # ── Events ────────────────────────────────────────────────────────────

    async def on_user_created(self, data: Any) -> None:
        event = UserCreatedEvent.model_validate(data)
        if event.welcome_requested_directly:
            logger.info("Welcome for user %s requested directly; skipping", event.user_id)
            return

        logger.info("Sending welcome notification to new user %s", event.user_id)
        try:
            async with self.database.session() as db:
                notification = await self.service.send_welcome(
                    db, event.user_id, event.first_name, correlation_id=event.correlation_id
                )
        except DeliveryFailureError as e:
            logger.error("Welcome notification for user %s failed: %s", event.user_id, e.message)
            await self._acknowledge(
                uuid.UUID(e.context["notification_id"]), str(event.user_id), WELCOME_TYPE,
                STATUS_FAILED, event.correlation_id,
            )
            return
        except MeshError as e:
            logger.error("Welcome notification for user %s not created: %s", event.user_id, e.message)
            return

        await self._acknowledge(
            notification.id, notification.user_id, notification.type,
            notification.status, notification.correlation_id,
        )

    async def _acknowledge(self, notification_id, user_id, notification_type, status, correlation_id) -> None:
        outcome = await self.emitter.emit_notification_sent(
            NotificationSentEvent(
                notification_id=notification_id,
                user_id=user_id,
                type=notification_type,
                status=status,
                correlation_id=correlation_id,
            )
        )
        if not outcome.delivered:
            logger.warning("notification.sent for %s was not delivered: %s", notification_id, outcome.reason)
