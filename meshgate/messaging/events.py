"""
MeshGate — Event Emitter
========================

What:  Best-effort publication of domain events to the other backend service.
How:   Serializes the event and writes it with TransportClient.emit. Any
       failure is logged and reported in the returned EmitOutcome; it is never
       raised, so a business operation never fails because an event could not
       be delivered.

    user service          ── user.created ──▶       notification service
    notification service  ── notification.sent ──▶  user service

`delivered=True` means the frame was written to the socket, not that a
subscriber processed it.
"""

import logging
from typing import NamedTuple, Optional

from meshgate.exceptions import MeshError
from meshgate.messaging.client import TransportClient
from meshgate.messaging.patterns import EventPattern
from meshgate.schemas.events import NotificationSentEvent, UserCreatedEvent

logger = logging.getLogger(__name__)


class EmitOutcome(NamedTuple):
    delivered: bool
    reason: Optional[str] = None


class EventEmitter:
    """
    Publishes events through one transport client.

    Args:
        client: Connection to the downstream service that subscribes to the
                events this emitter publishes
    """

    def __init__(self, client: TransportClient):
        self.client = client

    async def emit_user_created(self, event: UserCreatedEvent) -> EmitOutcome:
        return await self._emit(EventPattern.USER_CREATED, event)

    async def emit_notification_sent(self, event: NotificationSentEvent) -> EmitOutcome:
        return await self._emit(EventPattern.NOTIFICATION_SENT, event)

    async def _emit(self, pattern: EventPattern, event) -> EmitOutcome:
        try:
            await self.client.emit(pattern, event.model_dump(mode="json"))
        except MeshError as e:
            logger.error("Failed to emit %s to %s: %s", pattern.value, self.client.name, e.message)
            return EmitOutcome(delivered=False, reason=e.message)
        except Exception as e:
            logger.error("Failed to emit %s to %s: %s", pattern.value, self.client.name, e, exc_info=True)
            return EmitOutcome(delivered=False, reason=str(e) or type(e).__name__)

        logger.info("Emitted %s", pattern.value)
        return EmitOutcome(delivered=True)
