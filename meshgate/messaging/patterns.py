"""
MeshGate — Message and Event Patterns
=====================================

What:  The closed set of routing keys used on the wire.
How:   str-valued Enums, so a member compares equal to its wire string and
       serializes as-is. Routers and the gateway dispatcher check their
       tables against these enumerations at startup.

Ownership:
    Every MessagePattern belongs to exactly one service (its prefix).
    EventPatterns are published by one service and consumed by the other.
"""

from enum import Enum
from typing import FrozenSet


class Service(str, Enum):
    USER = "user"
    NOTIFICATION = "notification"


class MessagePattern(str, Enum):
    # ── User service ──────────────────────────────────────────────────────
    USER_CREATE = "user.create"
    USER_GET = "user.get"
    USER_GET_BY_EMAIL = "user.get_by_email"
    USER_ADVANCED_QUERY = "user.advanced_query"
    USER_STATS = "user.stats"
    USER_SIMILAR_NAMES = "user.similar_names"
    USER_CREATED_BETWEEN = "user.created_between"
    USER_WITH_NOTIFICATIONS = "user.with_notifications"

    # ── Notification service ──────────────────────────────────────────────
    NOTIFICATION_SEND = "notification.send"
    NOTIFICATION_STATUS = "notification.status"
    NOTIFICATION_BY_USER = "notification.by_user"
    NOTIFICATION_ADVANCED_QUERY = "notification.advanced_query"
    NOTIFICATION_STATS = "notification.stats"
    NOTIFICATION_FAILED = "notification.failed"
    NOTIFICATION_RETRY_FAILED = "notification.retry_failed"
    NOTIFICATION_TEST_EMAIL = "notification.test_email"

    @property
    def owner(self) -> Service:
        return Service(self.value.split(".", 1)[0])


class EventPattern(str, Enum):
    USER_CREATED = "user.created"
    NOTIFICATION_SENT = "notification.sent"


def patterns_owned_by(service: Service) -> FrozenSet[MessagePattern]:
    """All request/response patterns a service must handle."""
    return frozenset(p for p in MessagePattern if p.owner is service)


# Events each service subscribes to
SUBSCRIPTIONS = {
    Service.USER: frozenset({EventPattern.NOTIFICATION_SENT}),
    Service.NOTIFICATION: frozenset({EventPattern.USER_CREATED}),
}
