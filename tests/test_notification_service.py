"""
MeshGate — Notification Service Tests
=====================================

What:  NotificationService against an in-memory SQLite store with a fake
       mailer and a fake user directory, plus the notification.* handlers.

What we test:
    ✅ Successful send → 'sent', sent_at ≥ created_at
    ✅ Unresolvable recipient → 'failed', sent_at unset, DeliveryFailureError
    ✅ Retry-all: 3 failed rows, 2 recoverable → {retried 3, successful 2, failed 1}
    ✅ Status lookups: malformed ids are misses, repeats are stable
    ✅ Queries and statistics
    ✅ user.created handling: skip when direct, acknowledge both outcomes
"""

import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from meshgate.exceptions import DeliveryFailureError, TransportTimeoutError
from meshgate.handlers.notifications import NotificationHandlers
from meshgate.messaging.events import EmitOutcome
from meshgate.models.notification import Notification
from meshgate.schemas.events import UserCreatedEvent
from meshgate.schemas.notification import NotificationQuery, SendNotificationRequest


def alert(user_id="1", message="Your report is ready", **extra) -> SendNotificationRequest:
    return SendNotificationRequest(user_id=user_id, type="alert", message=message, **extra)


async def add_rows(database, *rows):
    async with database.session() as db:
        for row in rows:
            db.add(row)


class TestSendNotification:

    @pytest.mark.asyncio
    async def test_success_marks_sent(self, database, notification_service, directory, mailer):
        directory.add(1, "ada@example.com")

        async with database.session() as db:
            result = await notification_service.send_notification(db, alert())

        assert result.status == "sent"
        assert result.sent_at is not None
        assert result.sent_at >= result.created_at
        assert mailer.sent == [("alert", "ada@example.com", "Your report is ready")]

    @pytest.mark.asyncio
    async def test_unknown_user_marks_failed(self, database, notification_service, mailer):
        with pytest.raises(DeliveryFailureError) as exc_info:
            async with database.session() as db:
                await notification_service.send_notification(db, alert(user_id="999"))

        notification_id = exc_info.value.context["notification_id"]
        async with database.session() as db:
            stored = await notification_service.get_status(db, notification_id)

        assert stored.status == "failed"
        assert stored.sent_at is None
        assert mailer.sent == []

    @pytest.mark.asyncio
    async def test_lookup_failure_marks_failed(self, database, notification_service, directory):
        directory.error = TransportTimeoutError("user.get", 5.0)

        with pytest.raises(DeliveryFailureError):
            async with database.session() as db:
                await notification_service.send_notification(db, alert())

        async with database.session() as db:
            failed = await notification_service.failed(db)
        assert len(failed) == 1

    @pytest.mark.asyncio
    async def test_unexpected_lookup_error_still_settles_the_row(self, database, notification_service, directory):
        directory.error = RuntimeError("malformed user payload")

        with pytest.raises(DeliveryFailureError):
            async with database.session() as db:
                await notification_service.send_notification(db, alert())

        async with database.session() as db:
            statuses = (await db.execute(select(Notification.status))).scalars().all()
        assert statuses == ["failed"]

    @pytest.mark.asyncio
    async def test_non_numeric_user_is_not_looked_up(self, database, notification_service, directory):
        with pytest.raises(DeliveryFailureError):
            async with database.session() as db:
                await notification_service.send_notification(db, alert(user_id="abc"))
        assert directory.lookups == []

    @pytest.mark.asyncio
    async def test_welcome_uses_welcome_template(self, database, notification_service, directory, mailer):
        directory.add(1, "ada@example.com", first_name="Ada")

        async with database.session() as db:
            result = await notification_service.send_welcome(db, 1, "Ada", correlation_id="corr-1")

        assert result.type == "welcome"
        assert result.message == "Welcome Ada! Your account has been created successfully."
        assert result.correlation_id == "corr-1"
        assert mailer.sent == [("welcome", "ada@example.com", "Ada")]


class TestRetryFailed:

    @pytest.mark.asyncio
    async def test_three_failed_two_recover(self, database, notification_service, directory):
        directory.add(1, "ada@example.com")
        directory.add(2, "grace@example.com", first_name="Grace")
        await add_rows(
            database,
            Notification(user_id="1", type="alert", message="one", status="failed"),
            Notification(user_id="2", type="alert", message="two", status="failed"),
            Notification(user_id="99", type="alert", message="three", status="failed"),
            Notification(user_id="1", type="alert", message="done", status="sent"),
        )

        async with database.session() as db:
            result = await notification_service.retry_failed(db)

        assert (result.retried, result.successful, result.failed) == (3, 2, 1)

        async with database.session() as db:
            still_failed = await notification_service.failed(db)
        assert [n.user_id for n in still_failed] == ["99"]

    @pytest.mark.asyncio
    async def test_nothing_to_retry(self, database, notification_service):
        async with database.session() as db:
            result = await notification_service.retry_failed(db)
        assert (result.retried, result.successful, result.failed) == (0, 0, 0)


class TestQueries:

    @pytest.mark.asyncio
    async def test_malformed_status_id_is_a_miss(self, db_session, notification_service):
        assert await notification_service.get_status(db_session, "not-a-uuid") is None
        assert await notification_service.get_status(db_session, str(uuid.uuid4())) is None

    @pytest.mark.asyncio
    async def test_repeated_status_is_stable(self, database, notification_service, directory):
        directory.add(1, "ada@example.com")
        async with database.session() as db:
            sent = await notification_service.send_notification(db, alert())

        async with database.session() as db:
            first = await notification_service.get_status(db, str(sent.id))
        async with database.session() as db:
            second = await notification_service.get_status(db, str(sent.id))

        assert first == second
        assert first.status == "sent"

    @pytest.mark.asyncio
    async def test_by_user_newest_first_with_limit(self, database, notification_service, directory):
        directory.add(1, "ada@example.com")
        for i in range(3):
            async with database.session() as db:
                await notification_service.send_notification(db, alert(message=f"message {i}"))

        async with database.session() as db:
            latest = await notification_service.by_user(db, "1", limit=2)

        assert [n.message for n in latest] == ["message 2", "message 1"]

    @pytest.mark.asyncio
    async def test_advanced_query_filters(self, database, notification_service):
        await add_rows(
            database,
            Notification(user_id="1", type="alert", message="a", status="sent"),
            Notification(user_id="1", type="welcome", message="b", status="failed"),
            Notification(user_id="2", type="alert", message="c", status="failed"),
        )

        async with database.session() as db:
            failed_alerts = await notification_service.advanced_query(
                db, NotificationQuery(type="alert", status="failed")
            )
            for_user = await notification_service.advanced_query(db, NotificationQuery(user_id="1"))

        assert [n.message for n in failed_alerts] == ["c"]
        assert sorted(n.message for n in for_user) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_stats(self, database, notification_service):
        await add_rows(
            database,
            Notification(user_id="1", type="alert", message="a", status="sent"),
            Notification(user_id="1", type="welcome", message="b", status="failed"),
            Notification(user_id="2", type="alert", message="c", status="pending"),
        )
        now = datetime.now(timezone.utc)

        async with database.session() as db:
            stats = await notification_service.stats(db, now=now)

        assert (stats.total, stats.sent, stats.failed, stats.pending) == (3, 1, 1, 1)
        assert stats.by_type == {"alert": 2, "welcome": 1}
        assert [(d.date, d.count) for d in stats.by_day] == [(now.strftime("%Y-%m-%d"), 3)]

    @pytest.mark.asyncio
    async def test_email_connection_check(self, notification_service, mailer):
        assert (await notification_service.test_email()).success is True
        mailer.connection_ok = False
        result = await notification_service.test_email()
        assert result.success is False
        assert result.message == "Email connection test failed"


class TestNotificationHandlers:

    @pytest.fixture
    def emitter(self):
        emitter = AsyncMock()
        emitter.emit_notification_sent.return_value = EmitOutcome(delivered=True)
        return emitter

    @pytest.fixture
    def handlers(self, database, notification_service, emitter):
        return NotificationHandlers(database, notification_service, emitter)

    @staticmethod
    def event(**overrides) -> dict:
        payload = UserCreatedEvent(
            user_id=1, email="ada@example.com", first_name="Ada", last_name="Lovelace",
            correlation_id="corr-1",
        ).model_dump(mode="json")
        payload.update(overrides)
        return payload

    @pytest.mark.asyncio
    async def test_send_acknowledges(self, handlers, emitter, directory):
        directory.add(1, "ada@example.com")

        result = await handlers.send({"user_id": "1", "type": "alert", "message": "hi"})

        ack = emitter.emit_notification_sent.await_args.args[0]
        assert ack.notification_id == result.id
        assert ack.status == "sent"

    @pytest.mark.asyncio
    async def test_user_created_sends_welcome(self, handlers, emitter, directory, mailer):
        directory.add(1, "ada@example.com")

        await handlers.on_user_created(self.event())

        assert mailer.sent == [("welcome", "ada@example.com", "Ada")]
        ack = emitter.emit_notification_sent.await_args.args[0]
        assert (ack.type, ack.status, ack.correlation_id) == ("welcome", "sent", "corr-1")

    @pytest.mark.asyncio
    async def test_user_created_skips_direct_welcome(self, handlers, emitter, directory, mailer):
        await handlers.on_user_created(self.event(welcome_requested_directly=True))

        assert mailer.sent == []
        assert directory.lookups == []
        emitter.emit_notification_sent.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_welcome_is_acknowledged_not_raised(self, handlers, emitter, database):
        await handlers.on_user_created(self.event())

        ack = emitter.emit_notification_sent.await_args.args[0]
        assert ack.status == "failed"
        async with database.session() as db:
            row = (await db.execute(select(Notification))).scalar_one()
        assert row.id == ack.notification_id
        assert row.status == "failed"
