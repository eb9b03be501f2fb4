"""
MeshGate — User Service Handlers
================================

What:  Binds every user.* message pattern and the notification.sent event to
       UserService.
How:   Each handler validates its payload with the request schema, opens one
       session scope (commit on success, rollback on error) and returns a
       schema object; the router turns it into JSON.

Side effects of user.create:
    After the user row is committed a UserCreatedEvent is emitted to the
    notification service. The outcome is logged; it never fails the call.
"""

import logging
from typing import Any, List, Optional

from meshgate.database import Database
from meshgate.messaging.events import EventEmitter
from meshgate.messaging.patterns import EventPattern, MessagePattern
from meshgate.messaging.router import MessageRouter
from meshgate.schemas.events import NotificationSentEvent, UserCreatedEvent
from meshgate.schemas.user import (
    CreateUserCommand,
    DateRange,
    GetUserByEmailRequest,
    GetUserRequest,
    SimilarNamesRequest,
    UserQuery,
    UserResponse,
    UserStatsResponse,
    UserWithNotifications,
    WithNotificationsRequest,
)
from meshgate.services.user_service import UserService

logger = logging.getLogger(__name__)


class UserHandlers:
    def __init__(self, database: Database, service: UserService, emitter: EventEmitter):
        self.database = database
        self.service = service
        self.emitter = emitter

    def register(self, router: MessageRouter) -> MessageRouter:
        router.add_handler(MessagePattern.USER_CREATE, self.create_user)
        router.add_handler(MessagePattern.USER_GET, self.get_user)
        router.add_handler(MessagePattern.USER_GET_BY_EMAIL, self.get_user_by_email)
        router.add_handler(MessagePattern.USER_ADVANCED_QUERY, self.advanced_query)
        router.add_handler(MessagePattern.USER_STATS, self.stats)
        router.add_handler(MessagePattern.USER_SIMILAR_NAMES, self.similar_names)
        router.add_handler(MessagePattern.USER_CREATED_BETWEEN, self.created_between)
        router.add_handler(MessagePattern.USER_WITH_NOTIFICATIONS, self.with_notifications)
        router.add_subscriber(EventPattern.NOTIFICATION_SENT, self.on_notification_sent)
        return router

    # ── Request/response ──────────────────────────────────────────────────

    async def create_user(self, data: Any) -> UserResponse:
        command = CreateUserCommand.model_validate(data)
        logger.info("Creating user: %s", command.email)

        async with self.database.session() as db:
            user = await self.service.create_user(db, command)

        outcome = await self.emitter.emit_user_created(
            UserCreatedEvent(
                user_id=user.id,
                email=user.email,
                first_name=user.first_name,
                last_name=user.last_name,
                correlation_id=command.correlation_id,
                welcome_requested_directly=command.welcome_requested_directly,
            )
        )
        if not outcome.delivered:
            logger.warning("user.created for user %s was not delivered: %s", user.id, outcome.reason)
        return user

    async def get_user(self, data: Any) -> Optional[UserResponse]:
        request = GetUserRequest.model_validate(data)
        async with self.database.session() as db:
            return await self.service.get_user(db, request.id)

    async def get_user_by_email(self, data: Any) -> Optional[UserResponse]:
        request = GetUserByEmailRequest.model_validate(data)
        async with self.database.session() as db:
            return await self.service.get_user_by_email(db, request.email)

    async def advanced_query(self, data: Any) -> List[UserResponse]:
        query = UserQuery.model_validate(data or {})
        async with self.database.session() as db:
            return await self.service.advanced_query(db, query)

    async def stats(self, data: Any) -> UserStatsResponse:
        async with self.database.session() as db:
            return await self.service.stats(db)

    async def similar_names(self, data: Any) -> List[UserResponse]:
        request = SimilarNamesRequest.model_validate(data)
        async with self.database.session() as db:
            return await self.service.similar_names(db, request.name)

    async def created_between(self, data: Any) -> List[UserResponse]:
        window = DateRange.model_validate(data)
        async with self.database.session() as db:
            return await self.service.created_between(db, window)

    async def with_notifications(self, data: Any) -> List[UserWithNotifications]:
        request = WithNotificationsRequest.model_validate(data or {})
        async with self.database.session() as db:
            return await self.service.users_with_notifications(db, request.limit)

    # ── Events ────────────────────────────────────────────────────────────

    async def on_notification_sent(self, data: Any) -> None:
        event = NotificationSentEvent.model_validate(data)
        logger.info(
            "Notification %s for user %s acknowledged: %s (%s)",
            event.notification_id,
            event.user_id,
            event.status,
            event.type,
        )
