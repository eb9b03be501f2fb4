"""
MeshGate — Notification Service (Business Logic)
================================================

What:  Creates, delivers, queries and retries notifications.
How:   Stateless per-call methods over an AsyncSession, composed with the
       EmailService (delivery) and the UserDirectory (recipient lookup
       through the user service).
Who:   meshgate.handlers.notifications

Send Flow (notification.send):
    ┌──────────────┐    ┌──────────────┐    ┌──────────────┐    ┌──────────────┐
    │ Insert row   │───▶│ Resolve user │───▶│ Send email   │───▶│ sent/failed  │
    │ (pending,    │    │ (user.get,   │    │ (welcome or  │    │ (committed)  │
    │  committed)  │    │  retried)    │    │  generic)    │    │              │
    └──────────────┘    └──────────────┘    └──────────────┘    └──────────────┘

    If the user cannot be resolved, delivery is attempted against the
    placeholder `user-<id>@unresolved.invalid`, which the mailer refuses,
    so the row ends up 'failed' and DeliveryFailureError is raised.

Retry-all commits each row on its own; one failing row never rolls back
another and no error escapes the loop.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from sqlalchemy import desc, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from meshgate.exceptions import DatabaseError, DeliveryFailureError, MeshError
from meshgate.models.notification import (
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_SENT,
    Notification,
)
from meshgate.schemas.notification import (
    WELCOME_MESSAGE,
    WELCOME_TYPE,
    DayCount,
    EmailTestResponse,
    NotificationQuery,
    NotificationResponse,
    NotificationStatsResponse,
    RetryFailedResponse,
    SendNotificationRequest,
)
from meshgate.services.email_service import EmailService
from meshgate.services.user_directory import UserDirectory

logger = logging.getLogger(__name__)

STATS_WINDOW_DAYS = 30


def unresolved_address(user_id: str) -> str:
    return f"user-{user_id}@unresolved.invalid"


def day_bucket(db: AsyncSession, column):
    """SQL expression rendering a timestamp as 'YYYY-MM-DD' on the session's dialect."""
    if db.get_bind().dialect.name == "postgresql":
        return func.to_char(column, "YYYY-MM-DD")
    return func.strftime("%Y-%m-%d", column)


class NotificationService:
    """
    Args:
        mailer:    EmailService used for every delivery
        directory: UserDirectory for recipient lookups
    """

    def __init__(self, mailer: EmailService, directory: UserDirectory):
        self.mailer = mailer
        self.directory = directory

    # ── Sending ───────────────────────────────────────────────────────────

    async def send_notification(
        self,
        db: AsyncSession,
        request: SendNotificationRequest,
    ) -> NotificationResponse:
        """
        Create a notification and deliver it by email.

        Returns:
            The notification, status 'sent' with sent_at set

        Raises:
            DeliveryFailureError: delivery failed; the row is committed as
                                  'failed' first (its id is in the context)
            DatabaseError:        persistence failed
        """
        notification = Notification(
            user_id=request.user_id,
            type=request.type,
            message=request.message,
            status=STATUS_PENDING,
            correlation_id=request.correlation_id,
        )
        db.add(notification)
        await self._commit(db, "send_notification")
        logger.info("Notification %s created for user %s (%s)", notification.id, request.user_id, request.type)

        delivered = await self._deliver(notification)
        if delivered:
            notification.mark_sent()
        else:
            notification.mark_failed()
        await self._commit(db, "send_notification")

        if not delivered:
            logger.warning("Notification %s failed", notification.id)
            raise DeliveryFailureError(
                message=f"Failed to deliver notification to user {request.user_id}",
                context={"notification_id": str(notification.id), "user_id": request.user_id},
            )

        logger.info("Notification %s sent", notification.id)
        return NotificationResponse.model_validate(notification)

    async def send_welcome(
        self,
        db: AsyncSession,
        user_id: int,
        first_name: str,
        correlation_id: Optional[str] = None,
    ) -> NotificationResponse:
        return await self.send_notification(
            db,
            SendNotificationRequest(
                user_id=str(user_id),
                type=WELCOME_TYPE,
                message=WELCOME_MESSAGE.format(first_name=first_name),
                correlation_id=correlation_id,
            ),
        )

    async def retry_failed(self, db: AsyncSession) -> RetryFailedResponse:
        """
        Attempt delivery again for every failed notification.

        Rows are processed one at a time without backoff. A row that succeeds
        becomes 'sent' and is committed immediately; a row that fails (or
        raises) stays 'failed' and is counted.
        """
        rows = await self._all(
            db,
            select(Notification).where(Notification.status == STATUS_FAILED).order_by(Notification.created_at),
            "retry_failed",
        )
        # Reloaded by id each time: a rollback expires every loaded row
        ids = [row.id for row in rows]
        successful = failed = 0
        for notification_id in ids:
            try:
                notification = await db.get(Notification, notification_id)
                if await self._deliver(notification):
                    notification.mark_sent()
                    await self._commit(db, "retry_failed")
                    successful += 1
                else:
                    failed += 1
            except Exception:
                logger.exception("Retry of notification %s raised", notification_id)
                await db.rollback()
                failed += 1

        logger.info("Retried %d failed notifications: %d sent, %d still failing", len(ids), successful, failed)
        return RetryFailedResponse(retried=len(ids), successful=successful, failed=failed)

    async def test_email(self) -> EmailTestResponse:
        if await self.mailer.test_connection():
            return EmailTestResponse(success=True, message="Email connection test successful")
        return EmailTestResponse(success=False, message="Email connection test failed")

    # ── Queries ───────────────────────────────────────────────────────────

    async def get_status(self, db: AsyncSession, notification_id: str) -> Optional[NotificationResponse]:
        """Malformed ids are treated like unknown ones and return None."""
        try:
            key = uuid.UUID(str(notification_id))
        except ValueError:
            logger.info("Status requested for malformed notification id %r", notification_id)
            return None
        try:
            notification = (
                await db.execute(select(Notification).where(Notification.id == key))
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Database error in get_status: %s", e, exc_info=True)
            raise DatabaseError(context={"operation": "get_status", "error_type": type(e).__name__})
        return NotificationResponse.model_validate(notification) if notification else None

    async def by_user(self, db: AsyncSession, user_id: str, limit: int = 10) -> List[NotificationResponse]:
        stmt = (
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(desc(Notification.created_at))
            .limit(limit)
        )
        return self._responses(await self._all(db, stmt, "by_user"))

    async def advanced_query(self, db: AsyncSession, query: NotificationQuery) -> List[NotificationResponse]:
        stmt = select(Notification)
        if query.user_id:
            stmt = stmt.where(Notification.user_id == query.user_id)
        if query.type:
            stmt = stmt.where(Notification.type == query.type)
        if query.status:
            stmt = stmt.where(Notification.status == query.status)
        if query.date_from:
            stmt = stmt.where(Notification.created_at >= query.date_from)
        if query.date_to:
            stmt = stmt.where(Notification.created_at <= query.date_to)
        stmt = stmt.order_by(desc(Notification.created_at)).limit(query.limit).offset(query.offset)
        return self._responses(await self._all(db, stmt, "advanced_query"))

    async def failed(self, db: AsyncSession) -> List[NotificationResponse]:
        stmt = (
            select(Notification)
            .where(Notification.status == STATUS_FAILED)
            .order_by(desc(Notification.created_at))
        )
        return self._responses(await self._all(db, stmt, "failed"))

    async def stats(self, db: AsyncSession, now: Optional[datetime] = None) -> NotificationStatsResponse:
        """
        Totals by status and type, plus a per-day series over the trailing
        30 days (days without notifications are omitted).
        """
        now = now or datetime.now(timezone.utc)
        window_start = now - timedelta(days=STATS_WINDOW_DAYS)
        bucket = day_bucket(db, Notification.created_at).label("day")

        try:
            by_status = dict(
                (await db.execute(
                    select(Notification.status, func.count(Notification.id)).group_by(Notification.status)
                )).all()
            )
            by_type = dict(
                (await db.execute(
                    select(Notification.type, func.count(Notification.id)).group_by(Notification.type)
                )).all()
            )
            by_day = (
                await db.execute(
                    select(bucket, func.count(Notification.id))
                    .where(Notification.created_at >= window_start)
                    .group_by(bucket)
                    .order_by(bucket)
                )
            ).all()
        except SQLAlchemyError as e:
            logger.error("Database error computing notification stats: %s", e, exc_info=True)
            raise DatabaseError(context={"error_type": type(e).__name__})

        return NotificationStatsResponse(
            total=sum(by_status.values()),
            sent=by_status.get(STATUS_SENT, 0),
            failed=by_status.get(STATUS_FAILED, 0),
            pending=by_status.get(STATUS_PENDING, 0),
            by_type=by_type,
            by_day=[DayCount(date=day, count=count) for day, count in by_day],
        )

    # ── Helpers ───────────────────────────────────────────────────────────

    async def _resolve_recipient(self, user_id: str) -> Tuple[str, Optional[str]]:
        """
        Returns:
            (email address, first name); the placeholder address and None
            when the user service cannot tell us
        """
        try:
            numeric_id = int(user_id)
        except ValueError:
            logger.warning("User id %r is not numeric; cannot resolve recipient", user_id)
            return unresolved_address(user_id), None

        try:
            user = await self.directory.get_user(numeric_id)
        except MeshError as e:
            logger.warning("Could not resolve user %s: %s", user_id, e.message)
            return unresolved_address(user_id), None
        except Exception as e:
            # a row must never be left pending
            logger.error("User lookup for %s crashed: %s", user_id, e, exc_info=True)
            return unresolved_address(user_id), None

        if user is None:
            return unresolved_address(user_id), None
        return user.email, user.first_name

    async def _deliver(self, notification: Notification) -> bool:
        recipient, first_name = await self._resolve_recipient(notification.user_id)
        if notification.type == WELCOME_TYPE:
            return await self.mailer.send_welcome_email(recipient, first_name or "there")
        return await self.mailer.send_notification_email(recipient, notification.message, notification.type)

    async def _commit(self, db: AsyncSession, operation: str) -> None:
        try:
            await db.commit()
        except SQLAlchemyError as e:
            logger.error("Database error in %s: %s", operation, e, exc_info=True)
            raise DatabaseError(context={"operation": operation, "error_type": type(e).__name__})

    async def _all(self, db: AsyncSession, stmt, operation: str) -> List[Notification]:
        try:
            return list((await db.execute(stmt)).scalars().all())
        except SQLAlchemyError as e:
            logger.error("Database error in %s: %s", operation, e, exc_info=True)
            raise DatabaseError(context={"operation": operation, "error_type": type(e).__name__})

    @staticmethod
    def _responses(rows: List[Notification]) -> List[NotificationResponse]:
        return [NotificationResponse.model_validate(row) for row in rows]
