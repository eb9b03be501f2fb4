"""
MeshGate — Message Router
=========================

What:  Per-service routing table from patterns to handler coroutines.
How:   Exactly one handler per owned MessagePattern, any number of
       subscribers per EventPattern. The table is checked with `validate()`
       before the service starts accepting connections, so a pattern without
       a handler is a startup failure rather than a runtime surprise.

Usage:
    router = MessageRouter(Service.USER)

    @router.message(MessagePattern.USER_GET)
    async def get_user(data): ...

    @router.event(EventPattern.NOTIFICATION_SENT)
    async def on_notification_sent(data): ...

    router.validate()
"""

import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, DefaultDict, Dict, Iterable, List, Optional

from pydantic_core import to_jsonable_python

from meshgate.exceptions import ConfigurationError, ValidationError
from meshgate.messaging.patterns import (
    SUBSCRIPTIONS,
    EventPattern,
    MessagePattern,
    Service,
    patterns_owned_by,
)

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[Any]]


class MessageRouter:
    """Routing table for one service."""

    def __init__(
        self,
        service: Service,
        owned_patterns: Optional[Iterable[MessagePattern]] = None,
        owned_events: Optional[Iterable[EventPattern]] = None,
    ):
        self.service = service
        self.owned_patterns = frozenset(
            owned_patterns if owned_patterns is not None else patterns_owned_by(service)
        )
        self.owned_events = frozenset(
            owned_events if owned_events is not None else SUBSCRIPTIONS.get(service, ())
        )
        self._handlers: Dict[MessagePattern, Handler] = {}
        self._subscribers: DefaultDict[EventPattern, List[Handler]] = defaultdict(list)

    # ── Registration ──────────────────────────────────────────────────────

    def add_handler(self, pattern: MessagePattern, handler: Handler) -> None:
        if pattern not in self.owned_patterns:
            raise ConfigurationError(
                f"{self.service.value} service does not own pattern '{pattern.value}'"
            )
        if pattern in self._handlers:
            raise ConfigurationError(f"Pattern '{pattern.value}' already has a handler")
        self._handlers[pattern] = handler

    def add_subscriber(self, pattern: EventPattern, handler: Handler) -> None:
        if pattern not in self.owned_events:
            raise ConfigurationError(
                f"{self.service.value} service does not subscribe to '{pattern.value}'"
            )
        self._subscribers[pattern].append(handler)

    def message(self, pattern: MessagePattern) -> Callable[[Handler], Handler]:
        def decorator(handler: Handler) -> Handler:
            self.add_handler(pattern, handler)
            return handler
        return decorator

    def event(self, pattern: EventPattern) -> Callable[[Handler], Handler]:
        def decorator(handler: Handler) -> Handler:
            self.add_subscriber(pattern, handler)
            return handler
        return decorator

    def validate(self) -> None:
        """
        Raises:
            ConfigurationError: an owned pattern has no handler
        """
        missing = sorted(p.value for p in self.owned_patterns - self._handlers.keys())
        if missing:
            raise ConfigurationError(
                f"{self.service.value} service has no handler for: {', '.join(missing)}",
                context={"missing": missing},
            )
        for event in self.owned_events:
            if not self._subscribers.get(event):
                logger.warning("%s service has no subscriber for event '%s'", self.service.value, event.value)

    # ── Dispatch ──────────────────────────────────────────────────────────

    async def dispatch(self, pattern: str, data: Any) -> Any:
        """
        Run the handler for a request and return a JSON-compatible result.

        Raises:
            ValidationError: unknown pattern or one this service does not handle
            Anything the handler raises
        """
        try:
            key = MessagePattern(pattern)
        except ValueError:
            raise ValidationError(f"Unknown message pattern '{pattern}'", field="pattern")

        handler = self._handlers.get(key)
        if handler is None:
            raise ValidationError(
                f"Pattern '{pattern}' is not handled by the {self.service.value} service",
                field="pattern",
            )
        result = await handler(data)
        return to_jsonable_python(result)

    async def publish(self, pattern: str, data: Any) -> int:
        """
        Deliver an event to every subscriber. Subscriber errors are logged
        and do not stop the remaining subscribers.

        Returns:
            Number of subscribers that completed without error
        """
        try:
            key = EventPattern(pattern)
        except ValueError:
            logger.warning("Ignoring unknown event '%s'", pattern)
            return 0

        handlers = self._subscribers.get(key, [])
        if not handlers:
            logger.debug("No subscribers for event '%s'", pattern)
            return 0

        delivered = 0
        for handler in handlers:
            try:
                await handler(data)
                delivered += 1
            except Exception:
                logger.exception("Event handler %s failed for '%s'", getattr(handler, "__qualname__", handler), pattern)
        return delivered
