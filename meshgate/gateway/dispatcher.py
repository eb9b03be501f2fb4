"""
MeshGate — Gateway Dispatcher
=============================

What:  Routes every gateway operation to the owning backend service with a
       pattern-specific timeout and translates failures uniformly.
How:   A static routing table (pattern → owning service, timeout, action
       phrase) checked for completeness when the dispatcher is built. Each
       call is one downstream request; there is no caching, coalescing or
       circuit breaking.
Who:   Gateway routes and the registration orchestrator.

Timeouts:
    5s   single-entity lookups      user.get, user.get_by_email, notification.status
    10s  creates, sends, searches, stats, test email
    15s  user.with_notifications    (fans out to the notification service)
    30s  notification.retry_failed  (one SMTP session per failed row)

Error translation:
    Any MeshError from the call becomes
        GatewayError("Failed to <action>: <original message>")
    which the app maps to HTTP 500.
"""

import logging
from typing import Any, Dict, List, Mapping, NamedTuple, Optional

from pydantic import ValidationError as PydanticValidationError

from meshgate.exceptions import ConfigurationError, GatewayError, MeshError
from meshgate.messaging.client import TransportClient
from meshgate.messaging.patterns import MessagePattern, Service
from meshgate.schemas.notification import (
    EmailTestResponse,
    NotificationQuery,
    NotificationResponse,
    NotificationStatsResponse,
    RetryFailedResponse,
    SendNotificationRequest,
)
from meshgate.schemas.user import (
    CreateUserCommand,
    DateRange,
    UserQuery,
    UserResponse,
    UserStatsResponse,
    UserWithNotifications,
)

logger = logging.getLogger(__name__)


class Route(NamedTuple):
    service: Service
    timeout: float
    action: str


LOOKUP_TIMEOUT = 5.0
DEFAULT_TIMEOUT = 10.0
FAN_OUT_TIMEOUT = 15.0
BULK_TIMEOUT = 30.0

ROUTES: Dict[MessagePattern, Route] = {
    MessagePattern.USER_CREATE: Route(Service.USER, DEFAULT_TIMEOUT, "create user"),
    MessagePattern.USER_GET: Route(Service.USER, LOOKUP_TIMEOUT, "get user"),
    MessagePattern.USER_GET_BY_EMAIL: Route(Service.USER, LOOKUP_TIMEOUT, "get user"),
    MessagePattern.USER_ADVANCED_QUERY: Route(Service.USER, DEFAULT_TIMEOUT, "search users"),
    MessagePattern.USER_STATS: Route(Service.USER, DEFAULT_TIMEOUT, "get user stats"),
    MessagePattern.USER_SIMILAR_NAMES: Route(Service.USER, DEFAULT_TIMEOUT, "find similar users"),
    MessagePattern.USER_CREATED_BETWEEN: Route(Service.USER, DEFAULT_TIMEOUT, "get users by date range"),
    MessagePattern.USER_WITH_NOTIFICATIONS: Route(Service.USER, FAN_OUT_TIMEOUT, "get users with notifications"),
    MessagePattern.NOTIFICATION_SEND: Route(Service.NOTIFICATION, DEFAULT_TIMEOUT, "send notification"),
    MessagePattern.NOTIFICATION_STATUS: Route(Service.NOTIFICATION, LOOKUP_TIMEOUT, "get notification status"),
    MessagePattern.NOTIFICATION_BY_USER: Route(Service.NOTIFICATION, DEFAULT_TIMEOUT, "get notifications by user"),
    MessagePattern.NOTIFICATION_ADVANCED_QUERY: Route(Service.NOTIFICATION, DEFAULT_TIMEOUT, "search notifications"),
    MessagePattern.NOTIFICATION_STATS: Route(Service.NOTIFICATION, DEFAULT_TIMEOUT, "get notification stats"),
    MessagePattern.NOTIFICATION_FAILED: Route(Service.NOTIFICATION, DEFAULT_TIMEOUT, "get failed notifications"),
    MessagePattern.NOTIFICATION_RETRY_FAILED: Route(Service.NOTIFICATION, BULK_TIMEOUT, "retry notifications"),
    MessagePattern.NOTIFICATION_TEST_EMAIL: Route(Service.NOTIFICATION, DEFAULT_TIMEOUT, "test email connection"),
}


class GatewayDispatcher:
    """
    Args:
        clients: One transport client per backend service
        routes:  Routing table (defaults to ROUTES)

    Raises:
        ConfigurationError: a pattern has no route, a route points at the
                            wrong service, or a service has no client
    """

    def __init__(
        self,
        clients: Mapping[Service, TransportClient],
        routes: Optional[Mapping[MessagePattern, Route]] = None,
    ):
        self.clients = dict(clients)
        self.routes = dict(routes if routes is not None else ROUTES)
        self._check_routes()

    def _check_routes(self) -> None:
        missing = sorted(p.value for p in MessagePattern if p not in self.routes)
        if missing:
            raise ConfigurationError(f"No gateway route for: {', '.join(missing)}", context={"missing": missing})
        for pattern, route in self.routes.items():
            if route.service is not pattern.owner:
                raise ConfigurationError(
                    f"Route for '{pattern.value}' targets {route.service.value}, "
                    f"but the pattern belongs to {pattern.owner.value}"
                )
            if route.service not in self.clients:
                raise ConfigurationError(f"No client for the {route.service.value} service")

    # ── Core ──────────────────────────────────────────────────────────────

    async def call(self, pattern: MessagePattern, data: Any = None, action: Optional[str] = None) -> Any:
        """
        One downstream request.

        Raises:
            GatewayError: "Failed to <action>: <downstream message>"
        """
        route = self.routes[pattern]
        action = action or route.action
        client = self.clients[route.service]
        try:
            return await client.request(pattern, data, timeout=route.timeout)
        except MeshError as e:
            logger.error("Failed to %s: %s", action, e.message)
            raise GatewayError(f"Failed to {action}: {e.message}", pattern=pattern.value) from e

    async def _call_model(self, pattern: MessagePattern, data: Any, model, action: Optional[str] = None):
        result = await self.call(pattern, data, action)
        if result is None:
            return None
        return self._parse(pattern, action, lambda: model.model_validate(result))

    async def _call_list(self, pattern: MessagePattern, data: Any, model, action: Optional[str] = None) -> list:
        result = await self.call(pattern, data, action)
        return self._parse(pattern, action, lambda: [model.model_validate(item) for item in result or []])

    def _parse(self, pattern: MessagePattern, action: Optional[str], build):
        try:
            return build()
        except PydanticValidationError as e:
            action = action or self.routes[pattern].action
            logger.error("Unexpected response shape for '%s': %s", pattern.value, e)
            raise GatewayError(
                f"Failed to {action}: unexpected response from {self.routes[pattern].service.value} service",
                pattern=pattern.value,
            ) from e

    # ── Users ─────────────────────────────────────────────────────────────

    async def create_user(self, command: CreateUserCommand) -> UserResponse:
        return await self._call_model(MessagePattern.USER_CREATE, command.model_dump(mode="json"), UserResponse)

    async def get_user(self, user_id: int) -> Optional[UserResponse]:
        return await self._call_model(MessagePattern.USER_GET, {"id": user_id}, UserResponse)

    async def get_user_by_email(self, email: str) -> Optional[UserResponse]:
        return await self._call_model(MessagePattern.USER_GET_BY_EMAIL, {"email": email}, UserResponse)

    async def search_users(self, query: UserQuery, action: Optional[str] = None) -> List[UserResponse]:
        return await self._call_list(
            MessagePattern.USER_ADVANCED_QUERY, query.model_dump(mode="json"), UserResponse, action
        )

    async def user_stats(self) -> UserStatsResponse:
        return await self._call_model(MessagePattern.USER_STATS, {}, UserStatsResponse)

    async def similar_names(self, name: str) -> List[UserResponse]:
        return await self._call_list(MessagePattern.USER_SIMILAR_NAMES, {"name": name}, UserResponse)

    async def users_created_between(self, window: DateRange) -> List[UserResponse]:
        return await self._call_list(
            MessagePattern.USER_CREATED_BETWEEN, window.model_dump(mode="json"), UserResponse
        )

    async def users_with_notifications(self, limit: int = 50) -> List[UserWithNotifications]:
        return await self._call_list(
            MessagePattern.USER_WITH_NOTIFICATIONS, {"limit": limit}, UserWithNotifications
        )

    # ── Notifications ─────────────────────────────────────────────────────

    async def send_notification(self, request: SendNotificationRequest) -> NotificationResponse:
        return await self._call_model(
            MessagePattern.NOTIFICATION_SEND, request.model_dump(mode="json"), NotificationResponse
        )

    async def notification_status(self, notification_id: str) -> Optional[NotificationResponse]:
        return await self._call_model(
            MessagePattern.NOTIFICATION_STATUS, {"id": notification_id}, NotificationResponse
        )

    async def notifications_by_user(self, user_id: str, limit: int = 10) -> List[NotificationResponse]:
        return await self._call_list(
            MessagePattern.NOTIFICATION_BY_USER, {"user_id": user_id, "limit": limit}, NotificationResponse
        )

    async def search_notifications(
        self,
        query: NotificationQuery,
        action: Optional[str] = None,
    ) -> List[NotificationResponse]:
        return await self._call_list(
            MessagePattern.NOTIFICATION_ADVANCED_QUERY,
            query.model_dump(mode="json", exclude_none=True),
            NotificationResponse,
            action,
        )

    async def notification_stats(self) -> NotificationStatsResponse:
        return await self._call_model(MessagePattern.NOTIFICATION_STATS, {}, NotificationStatsResponse)

    async def failed_notifications(self) -> List[NotificationResponse]:
        return await self._call_list(MessagePattern.NOTIFICATION_FAILED, {}, NotificationResponse)

    async def retry_failed(self) -> RetryFailedResponse:
        return await self._call_model(MessagePattern.NOTIFICATION_RETRY_FAILED, {}, RetryFailedResponse)

    async def test_email(self) -> EmailTestResponse:
        return await self._call_model(MessagePattern.NOTIFICATION_TEST_EMAIL, {}, EmailTestResponse)

    # ── Health ────────────────────────────────────────────────────────────

    async def probe(self) -> Dict[str, str]:
        """Try to connect to every backend service; 'reachable' or 'unreachable' per service."""
        status = {}
        for service, client in self.clients.items():
            try:
                await client.connect()
                status[service.value] = "reachable"
            except MeshError as e:
                logger.warning("Health check: %s service unreachable: %s", service.value, e.message)
                status[service.value] = "unreachable"
        return status

    async def close(self) -> None:
        for client in self.clients.values():
            await client.close()
