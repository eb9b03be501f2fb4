"""
MeshGate — User Service Tests
=============================

What:  UserService against an in-memory SQLite store, plus the user.*
       handlers that wrap it.

What we test:
    ✅ Created users carry a bcrypt hash that never appears in a response
    ✅ Duplicate emails raise ConflictError and insert nothing
    ✅ Lookups by id and email agree; misses return None; repeats are stable
    ✅ Advanced query, similar names, date ranges and monthly stats
    ✅ users_with_notifications merges per-user notification batches
    ✅ user.create emits user.created with the saga fields
"""

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from meshgate.exceptions import ConfigurationError, ConflictError, RemoteServiceError
from meshgate.handlers.users import UserHandlers
from meshgate.messaging.events import EmitOutcome
from meshgate.messaging.patterns import MessagePattern
from meshgate.models.user import User
from meshgate.schemas.user import CreateUserCommand, DateRange, UserQuery
from meshgate.services.security import verify_password
from meshgate.services.user_service import UserService, trailing_months


def command(email="ada@example.com", first_name="Ada", last_name="Lovelace", **extra) -> CreateUserCommand:
    return CreateUserCommand(
        first_name=first_name, last_name=last_name, email=email, password="secret123", **extra
    )


async def create(database, service, **kwargs):
    async with database.session() as db:
        return await service.create_user(db, command(**kwargs))


class TestCreateUser:

    @pytest.mark.asyncio
    async def test_password_is_hashed_and_never_returned(self, database, user_service):
        user = await create(database, user_service)

        assert "password" not in user.model_dump()
        assert user.id is not None
        assert user.full_name == "Ada Lovelace"

        async with database.session() as db:
            row = (await db.execute(select(User).where(User.id == user.id))).scalar_one()
        assert row.password != "secret123"
        assert verify_password("secret123", row.password)

    @pytest.mark.asyncio
    async def test_duplicate_email_conflicts_without_new_row(self, database, user_service):
        await create(database, user_service)

        with pytest.raises(ConflictError):
            await create(database, user_service, first_name="Other")

        async with database.session() as db:
            count = (await db.execute(select(func.count(User.id)))).scalar()
        assert count == 1


class TestLookups:

    @pytest.mark.asyncio
    async def test_get_by_email_returns_same_user(self, database, user_service):
        created = await create(database, user_service)

        async with database.session() as db:
            by_email = await user_service.get_user_by_email(db, "ada@example.com")
            by_id = await user_service.get_user(db, created.id)

        assert by_email.id == created.id
        assert by_id.email == "ada@example.com"

    @pytest.mark.asyncio
    async def test_repeated_get_is_stable(self, database, user_service):
        created = await create(database, user_service)

        async with database.session() as db:
            first = await user_service.get_user(db, created.id)
        async with database.session() as db:
            second = await user_service.get_user(db, created.id)

        assert first == second

    @pytest.mark.asyncio
    async def test_misses_return_none(self, db_session, user_service):
        assert await user_service.get_user(db_session, 12345) is None
        assert await user_service.get_user_by_email(db_session, "nobody@example.com") is None


class TestQueries:

    @pytest.mark.asyncio
    async def test_advanced_query_search_is_case_insensitive(self, database, user_service):
        await create(database, user_service, email="ada@example.com")
        await create(database, user_service, email="grace@example.com", first_name="Grace", last_name="Hopper")

        async with database.session() as db:
            found = await user_service.advanced_query(db, UserQuery(search="HOPP"))
            everyone = await user_service.advanced_query(db, UserQuery())

        assert [u.email for u in found] == ["grace@example.com"]
        assert len(everyone) == 2
        # newest first
        assert everyone[0].email == "grace@example.com"

    @pytest.mark.asyncio
    async def test_advanced_query_pagination(self, database, user_service):
        for i in range(5):
            await create(database, user_service, email=f"user{i}@example.com")

        async with database.session() as db:
            page = await user_service.advanced_query(db, UserQuery(limit=2, offset=2))

        assert [u.email for u in page] == ["user2@example.com", "user1@example.com"]

    @pytest.mark.asyncio
    async def test_similar_names(self, database, user_service):
        await create(database, user_service, email="ada@example.com", first_name="Ada")
        await create(database, user_service, email="adam@example.com", first_name="Adam", last_name="Smith")
        await create(database, user_service, email="bob@example.com", first_name="Bob", last_name="Jones")

        async with database.session() as db:
            found = await user_service.similar_names(db, "ada")

        assert [u.first_name for u in found] == ["Ada", "Adam"]

    @pytest.mark.asyncio
    async def test_created_between_is_inclusive(self, database, user_service):
        user = await create(database, user_service)
        window = DateRange(
            start_date=user.created_at - timedelta(minutes=1),
            end_date=user.created_at + timedelta(minutes=1),
        )
        before = DateRange(
            start_date=user.created_at - timedelta(days=2),
            end_date=user.created_at - timedelta(days=1),
        )

        async with database.session() as db:
            assert [u.id for u in await user_service.created_between(db, window)] == [user.id]
            assert await user_service.created_between(db, before) == []

    @pytest.mark.asyncio
    async def test_stats_cover_twelve_months(self, database, user_service):
        await create(database, user_service, email="a@example.com")
        await create(database, user_service, email="b@example.com")
        now = datetime.now(timezone.utc)

        async with database.session() as db:
            stats = await user_service.stats(db, now=now)

        assert stats.total_users == 2
        assert stats.users_this_month == 2
        assert len(stats.users_by_month) == 12
        assert stats.users_by_month[-1].month == now.strftime("%Y-%m")
        assert stats.users_by_month[-1].count == 2
        assert sum(m.count for m in stats.users_by_month[:-1]) == 0

    def test_trailing_months_cross_year_boundary(self):
        months = trailing_months(datetime(2026, 2, 15, tzinfo=timezone.utc), 4)
        assert months == ["2025-11", "2025-12", "2026-01", "2026-02"]


class TestUsersWithNotifications:

    @pytest.mark.asyncio
    async def test_merges_notifications_per_user(self, database):
        client = AsyncMock()
        service = UserService(notifications=client)
        ada = await create(database, service, email="ada@example.com")
        await create(database, service, email="grace@example.com", first_name="Grace")

        welcome = {
            "id": str(uuid.uuid4()),
            "type": "welcome",
            "message": "Welcome Ada!",
            "status": "sent",
            "created_at": "2026-10-01T12:00:00+00:00",
        }

        async def by_user(pattern, data, timeout):
            return [welcome] if data["user_id"] == str(ada.id) else []

        client.request.side_effect = by_user

        async with database.session() as db:
            result = await service.users_with_notifications(db, limit=10)

        counts = {u.email: u.notification_count for u in result}
        assert counts == {"ada@example.com": 1, "grace@example.com": 0}
        client.request.assert_any_await(
            MessagePattern.NOTIFICATION_BY_USER, {"user_id": str(ada.id), "limit": 10}, timeout=5.0
        )

    @pytest.mark.asyncio
    async def test_notification_service_failure_propagates(self, database):
        client = AsyncMock()
        client.request.side_effect = RemoteServiceError("database down", remote_code="database_error")
        service = UserService(notifications=client)
        await create(database, service)

        with pytest.raises(RemoteServiceError):
            async with database.session() as db:
                await service.users_with_notifications(db)

    @pytest.mark.asyncio
    async def test_requires_client(self, db_session, user_service):
        with pytest.raises(ConfigurationError):
            await user_service.users_with_notifications(db_session)


class TestUserHandlers:

    @pytest.mark.asyncio
    async def test_create_emits_user_created(self, database, user_service):
        emitter = AsyncMock()
        emitter.emit_user_created.return_value = EmitOutcome(delivered=True)
        handlers = UserHandlers(database, user_service, emitter)

        user = await handlers.create_user({
            "first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.com",
            "password": "secret123", "correlation_id": "corr-1", "welcome_requested_directly": True,
        })

        event = emitter.emit_user_created.await_args.args[0]
        assert event.user_id == user.id
        assert event.email == "ada@example.com"
        assert event.correlation_id == "corr-1"
        assert event.welcome_requested_directly is True

    @pytest.mark.asyncio
    async def test_undelivered_event_does_not_fail_create(self, database, user_service):
        emitter = AsyncMock()
        emitter.emit_user_created.return_value = EmitOutcome(delivered=False, reason="connection refused")
        handlers = UserHandlers(database, user_service, emitter)

        user = await handlers.create_user({
            "first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.com", "password": "secret123",
        })

        assert user.email == "ada@example.com"
        fetched = await handlers.get_user({"id": user.id})
        assert fetched.email == user.email

    @pytest.mark.asyncio
    async def test_conflict_skips_event(self, database, user_service):
        emitter = AsyncMock()
        emitter.emit_user_created.return_value = EmitOutcome(delivered=True)
        handlers = UserHandlers(database, user_service, emitter)
        payload = {"first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.com", "password": "secret123"}

        await handlers.create_user(payload)
        with pytest.raises(ConflictError):
            await handlers.create_user(payload)

        assert emitter.emit_user_created.await_count == 1
