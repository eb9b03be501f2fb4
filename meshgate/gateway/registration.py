"""
MeshGate — Registration Orchestrator
====================================

What:  The registration saga: create a user, then make sure a welcome
       notification goes out, and report what happened.
How:   A small state machine driven by the gateway dispatcher.

    START ──▶ USER_CREATED ──┬──▶ NOTIFICATION_REQUESTED ──▶ DONE
      │                      └──▶ NOTIFICATION_SKIPPED ───▶ DONE
      └──────────────────────────────────────────────────▶ FAILED

Modes:
    direct  The orchestrator sends `notification.send` itself and waits for
            it. The create request is flagged so the user.created subscriber
            does not send a second welcome.
    event   The user.created event triggers the welcome on the notification
            service. The create request carries a fresh correlation id; the
            orchestrator polls `notification.by_user` until a welcome with
            that id reaches a terminal status, or gives up after
            registration_ack_timeout and reports it as 'unconfirmed'.

There is no compensation: if the welcome fails, the user stays created.
"""

import asyncio
import logging
import time
import uuid
from enum import Enum
from typing import Awaitable, Callable, Optional, Tuple

from meshgate.config import settings
from meshgate.exceptions import MeshError
from meshgate.gateway.dispatcher import GatewayDispatcher
from meshgate.schemas.notification import WELCOME_MESSAGE, WELCOME_TYPE, SendNotificationRequest
from meshgate.schemas.registration import (
    RegisteredNotification,
    RegisteredUser,
    RegistrationMode,
    RegistrationSummary,
)
from meshgate.schemas.user import CreateUserCommand, CreateUserRequest, UserResponse

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("sent", "failed")
UNCONFIRMED = "unconfirmed"
SKIPPED = "skipped"


class RegistrationState(str, Enum):
    START = "start"
    USER_CREATED = "user_created"
    NOTIFICATION_REQUESTED = "notification_requested"
    NOTIFICATION_SKIPPED = "notification_skipped"
    DONE = "done"
    FAILED = "failed"


class RegistrationOrchestrator:
    """
    Args:
        dispatcher:    Gateway dispatcher used for every downstream call
        mode:          Default mode (settings.registration_mode)
        ack_timeout:   Seconds the event path waits for the welcome
        poll_interval: Seconds between acknowledgement polls
        clock, sleep:  Replaceable for tests
    """

    def __init__(
        self,
        dispatcher: GatewayDispatcher,
        mode: Optional[RegistrationMode] = None,
        ack_timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.dispatcher = dispatcher
        self.mode = mode or settings.registration_mode
        self.ack_timeout = ack_timeout if ack_timeout is not None else settings.registration_ack_timeout
        self.poll_interval = poll_interval if poll_interval is not None else settings.registration_poll_interval
        self.clock = clock
        self.sleep = sleep

    async def register(
        self,
        request: CreateUserRequest,
        mode: Optional[RegistrationMode] = None,
        send_welcome: bool = True,
    ) -> RegistrationSummary:
        """
        Run the saga.

        Raises:
            GatewayError: user creation failed, or (direct mode) the welcome
                          notification could not be sent
        """
        mode = mode or self.mode
        started = time.perf_counter()
        correlation_id = uuid.uuid4().hex
        state = RegistrationState.START
        logger.info("Starting %s registration for %s (correlation %s)", mode, request.email, correlation_id)

        try:
            # ── Step 1: create the user ───────────────────────────────────
            user = await self.dispatcher.create_user(
                CreateUserCommand(
                    **request.model_dump(),
                    correlation_id=correlation_id,
                    # suppresses the event-driven welcome
                    welcome_requested_directly=(mode == "direct" or not send_welcome),
                )
            )
            state = RegistrationState.USER_CREATED
            logger.info("User created with ID: %s", user.id)

            # ── Step 2: welcome notification ──────────────────────────────
            if not send_welcome:
                state = RegistrationState.NOTIFICATION_SKIPPED
                notification_id, status = None, SKIPPED
            elif mode == "direct":
                state = RegistrationState.NOTIFICATION_REQUESTED
                notification_id, status = await self._send_direct(user, correlation_id)
            else:
                state = RegistrationState.NOTIFICATION_REQUESTED
                notification_id, status = await self._await_acknowledgement(user, correlation_id)
        except MeshError as e:
            failed_in, state = state, RegistrationState.FAILED
            logger.error(
                "Registration %s after %dms (last step reached: %s): %s",
                state.value, _elapsed_ms(started), failed_in.value, e.message,
                extra={"registration_state": state.value, "failed_in": failed_in.value},
            )
            raise

        state = RegistrationState.DONE
        elapsed = _elapsed_ms(started)
        logger.info("Registration completed in %dms (notification %s)", elapsed, status)
        return RegistrationSummary(
            user=RegisteredUser(id=user.id, email=user.email, name=user.full_name),
            notification=RegisteredNotification(id=notification_id, status=status),
            total_time=elapsed,
            mode=mode,
            state=state.value,
        )

    async def _send_direct(self, user: UserResponse, correlation_id: str) -> Tuple[str, str]:
        notification = await self.dispatcher.send_notification(
            SendNotificationRequest(
                user_id=str(user.id),
                type=WELCOME_TYPE,
                message=WELCOME_MESSAGE.format(first_name=user.first_name),
                correlation_id=correlation_id,
            )
        )
        logger.info("Welcome notification sent: %s", notification.id)
        return str(notification.id), notification.status

    async def _await_acknowledgement(self, user: UserResponse, correlation_id: str) -> Tuple[Optional[str], str]:
        """
        Poll until the event-driven welcome for this registration settles.

        Returns:
            (notification id, its terminal status), or (id if seen, 'unconfirmed')
        """
        deadline = self.clock() + self.ack_timeout
        seen_id: Optional[str] = None

        while True:
            try:
                notifications = await self.dispatcher.notifications_by_user(str(user.id))
            except MeshError as e:
                logger.warning("Acknowledgement poll for user %s failed: %s", user.id, e.message)
                notifications = []

            for notification in notifications:
                if notification.type != WELCOME_TYPE or notification.correlation_id != correlation_id:
                    continue
                seen_id = str(notification.id)
                if notification.status in TERMINAL_STATUSES:
                    logger.info("Welcome notification %s acknowledged: %s", seen_id, notification.status)
                    return seen_id, notification.status

            remaining = deadline - self.clock()
            if remaining <= 0:
                logger.warning(
                    "Welcome notification for user %s unconfirmed after %gs",
                    user.id, self.ack_timeout,
                )
                return seen_id, UNCONFIRMED
            await self.sleep(min(self.poll_interval, remaining))


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
