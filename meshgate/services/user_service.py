"""
MeshGate — User Service (Business Logic)
========================================

What:  Everything the user service does with its `users` table.
How:   Stateless methods that receive an AsyncSession per call; the handler
       layer owns the session scope (commit on success, rollback on error).
Who:   meshgate.handlers.users

Duplicate emails:
    There is no "does this email exist?" pre-check. The insert relies on the
    unique constraint and an IntegrityError becomes ConflictError, so two
    concurrent registrations with the same address cannot both succeed.

Errors:
    SQLAlchemy failures are logged and wrapped in DatabaseError (generic
    message, original type in context). Lookups that miss return None.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import desc, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from meshgate.exceptions import ConfigurationError, ConflictError, DatabaseError
from meshgate.messaging.client import TransportClient
from meshgate.messaging.patterns import MessagePattern
from meshgate.models.user import User
from meshgate.schemas.notification import NotificationSummary
from meshgate.schemas.user import (
    CreateUserCommand,
    DateRange,
    MonthCount,
    UserQuery,
    UserResponse,
    UserStatsResponse,
    UserWithNotifications,
)
from meshgate.services.security import hash_password

logger = logging.getLogger(__name__)

SIMILAR_NAMES_LIMIT = 50
NOTIFICATIONS_PER_USER = 10


def month_bucket(db: AsyncSession, column):
    """SQL expression rendering a timestamp as 'YYYY-MM' on the session's dialect."""
    if db.get_bind().dialect.name == "postgresql":
        return func.to_char(column, "YYYY-MM")
    return func.strftime("%Y-%m", column)


def trailing_months(now: datetime, count: int) -> List[str]:
    """The last `count` month keys ending with now's month, oldest first."""
    year, month = now.year, now.month
    keys = []
    for _ in range(count):
        keys.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(keys))


class UserService:
    """
    Args:
        notifications: Client for the notification service, used only by
                       users_with_notifications
    """

    def __init__(self, notifications: Optional[TransportClient] = None):
        self.notifications = notifications

    async def create_user(self, db: AsyncSession, command: CreateUserCommand) -> UserResponse:
        """
        Hash the password and insert the user.

        Raises:
            ConflictError: the email is already registered (nothing inserted)
            DatabaseError: any other persistence failure
        """
        # bcrypt is CPU-bound
        hashed = await asyncio.to_thread(hash_password, command.password)
        user = User(
            first_name=command.first_name,
            last_name=command.last_name,
            email=command.email,
            password=hashed,
        )
        db.add(user)
        try:
            await db.flush()
        except IntegrityError:
            logger.info("Rejected duplicate registration for %s", command.email)
            raise ConflictError(context={"email": command.email})
        except SQLAlchemyError as e:
            logger.error("Database error creating user: %s", e, exc_info=True)
            raise DatabaseError(context={"error_type": type(e).__name__})

        logger.info("User created with ID: %s", user.id)
        return UserResponse.model_validate(user)

    async def get_user(self, db: AsyncSession, user_id: int) -> Optional[UserResponse]:
        user = await self._scalar(db, select(User).where(User.id == user_id), "get_user")
        return UserResponse.model_validate(user) if user else None

    async def get_user_by_email(self, db: AsyncSession, email: str) -> Optional[UserResponse]:
        user = await self._scalar(db, select(User).where(User.email == email), "get_user_by_email")
        return UserResponse.model_validate(user) if user else None

    async def advanced_query(self, db: AsyncSession, query: UserQuery) -> List[UserResponse]:
        """
        Filter users by a free-text search and a creation lower bound.

        search matches anywhere in first name, last name or email
        (case-insensitive). Newest first.
        """
        stmt = select(User)
        if query.search:
            pattern = f"%{query.search}%"
            stmt = stmt.where(
                or_(
                    User.first_name.ilike(pattern),
                    User.last_name.ilike(pattern),
                    User.email.ilike(pattern),
                )
            )
        if query.created_after:
            stmt = stmt.where(User.created_at >= query.created_after)
        stmt = stmt.order_by(desc(User.created_at), desc(User.id)).limit(query.limit).offset(query.offset)
        return await self._list(db, stmt, "advanced_query")

    async def stats(self, db: AsyncSession, now: Optional[datetime] = None) -> UserStatsResponse:
        """
        Registration statistics.

        users_by_month covers the trailing 12 calendar months including the
        current one; months without registrations are reported as 0.
        """
        now = now or datetime.now(timezone.utc)
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        months = trailing_months(now, 12)
        window_start = month_start.replace(year=int(months[0][:4]), month=int(months[0][5:]))

        bucket = month_bucket(db, User.created_at).label("month")
        try:
            total = (await db.execute(select(func.count(User.id)))).scalar() or 0
            this_month = (
                await db.execute(select(func.count(User.id)).where(User.created_at >= month_start))
            ).scalar() or 0
            rows = (
                await db.execute(
                    select(bucket, func.count(User.id))
                    .where(User.created_at >= window_start)
                    .group_by(bucket)
                )
            ).all()
        except SQLAlchemyError as e:
            logger.error("Database error computing user stats: %s", e, exc_info=True)
            raise DatabaseError(context={"error_type": type(e).__name__})

        counts = {month: count for month, count in rows}
        return UserStatsResponse(
            total_users=total,
            users_this_month=this_month,
            users_by_month=[MonthCount(month=m, count=counts.get(m, 0)) for m in months],
        )

    async def similar_names(self, db: AsyncSession, name: str) -> List[UserResponse]:
        pattern = f"%{name}%"
        stmt = (
            select(User)
            .where(or_(User.first_name.ilike(pattern), User.last_name.ilike(pattern)))
            .order_by(User.first_name, User.last_name)
            .limit(SIMILAR_NAMES_LIMIT)
        )
        return await self._list(db, stmt, "similar_names")

    async def created_between(self, db: AsyncSession, window: DateRange) -> List[UserResponse]:
        stmt = (
            select(User)
            .where(User.created_at >= window.start_date, User.created_at <= window.end_date)
            .order_by(desc(User.created_at), desc(User.id))
        )
        return await self._list(db, stmt, "created_between")

    async def users_with_notifications(self, db: AsyncSession, limit: int = 50) -> List[UserWithNotifications]:
        """
        Newest users, each with their latest notifications.

        Notifications come from the notification service over the transport,
        one `notification.by_user` request per user, issued concurrently.

        Raises:
            TransportError: the notification service failed for any user
        """
        if self.notifications is None:
            raise ConfigurationError("Notification service client is not configured")

        stmt = select(User).order_by(desc(User.created_at), desc(User.id)).limit(limit)
        users = await self._list(db, stmt, "users_with_notifications")

        batches = await asyncio.gather(*(
            self.notifications.request(
                MessagePattern.NOTIFICATION_BY_USER,
                {"user_id": str(user.id), "limit": NOTIFICATIONS_PER_USER},
                timeout=5.0,
            )
            for user in users
        ))

        result = []
        for user, batch in zip(users, batches):
            summaries = [NotificationSummary.model_validate(item) for item in batch or []]
            result.append(
                UserWithNotifications(
                    **user.model_dump(),
                    notification_count=len(summaries),
                    notifications=summaries,
                )
            )
        return result

    # ── Helpers ───────────────────────────────────────────────────────────

    async def _scalar(self, db: AsyncSession, stmt, operation: str) -> Optional[User]:
        try:
            return (await db.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Database error in %s: %s", operation, e, exc_info=True)
            raise DatabaseError(context={"operation": operation, "error_type": type(e).__name__})

    async def _list(self, db: AsyncSession, stmt, operation: str) -> List[UserResponse]:
        try:
            users = (await db.execute(stmt)).scalars().all()
        except SQLAlchemyError as e:
            logger.error("Database error in %s: %s", operation, e, exc_info=True)
            raise DatabaseError(context={"operation": operation, "error_type": type(e).__name__})
        return [UserResponse.model_validate(u) for u in users]
