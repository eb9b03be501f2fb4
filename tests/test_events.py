"""
MeshGate — Event Emitter and Email Service Tests
================================================

What we test:
    ✅ EmitOutcome reports delivery without ever raising
    ✅ Events are serialized to JSON-compatible payloads
    ✅ Email templates escape user content
    ✅ The mailer refuses `.invalid` recipients and reports SMTP failures as False
    ✅ A failed STARTTLS or login closes the SMTP session
"""

import smtplib
import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pydantic import ValidationError as PydanticValidationError

from meshgate.exceptions import ConnectionFailureError
from meshgate.messaging.events import EmitOutcome, EventEmitter
from meshgate.messaging.patterns import EventPattern
from meshgate.schemas.events import NotificationSentEvent, UserCreatedEvent
from meshgate.services.email_service import EmailService


def user_created() -> UserCreatedEvent:
    return UserCreatedEvent(
        user_id=1, email="ada@example.com", first_name="Ada", last_name="Lovelace", correlation_id="corr-1",
    )


@pytest.fixture
def client():
    c = AsyncMock()
    c.name = "notification-service"
    return c


class TestEventEmitter:

    @pytest.mark.asyncio
    async def test_delivered(self, client):
        event = user_created()

        outcome = await EventEmitter(client).emit_user_created(event)

        assert outcome == EmitOutcome(delivered=True)
        client.emit.assert_awaited_once_with(EventPattern.USER_CREATED, event.model_dump(mode="json"))
        payload = client.emit.await_args.args[1]
        assert payload["correlation_id"] == "corr-1"
        assert isinstance(payload["timestamp"], str)

    @pytest.mark.asyncio
    async def test_transport_failure_is_reported(self, client):
        client.emit.side_effect = ConnectionFailureError("Could not connect to notification-service")

        outcome = await EventEmitter(client).emit_user_created(user_created())

        assert outcome.delivered is False
        assert outcome.reason == "Could not connect to notification-service"

    @pytest.mark.asyncio
    async def test_unexpected_failure_is_reported(self, client):
        client.emit.side_effect = RuntimeError("socket exploded")

        outcome = await EventEmitter(client).emit_notification_sent(
            NotificationSentEvent(notification_id=uuid.uuid4(), user_id="1", type="welcome", status="sent")
        )

        assert outcome == EmitOutcome(delivered=False, reason="socket exploded")

    @pytest.mark.asyncio
    async def test_notification_sent_pattern(self, client):
        notification_id = uuid.uuid4()
        await EventEmitter(client).emit_notification_sent(
            NotificationSentEvent(notification_id=notification_id, user_id="1", type="welcome", status="failed")
        )

        pattern, payload = client.emit.await_args.args
        assert pattern is EventPattern.NOTIFICATION_SENT
        assert payload["notification_id"] == str(notification_id)
        assert payload["status"] == "failed"

    def test_events_are_immutable(self):
        event = user_created()
        with pytest.raises(PydanticValidationError):
            event.user_id = 2


class TestEmailService:

    @pytest.fixture
    def mailer(self):
        return EmailService(host="smtp.example.com", port=587, username="", password="", sender="noreply@example.com")

    def test_welcome_template(self, mailer):
        html = mailer.render_welcome("Ada")
        assert "Ada" in html
        assert "<html" in html.lower()

    def test_notification_template_escapes_message(self, mailer):
        html = mailer.render_notification("<script>alert(1)</script>", "alert")
        assert "<script>" not in html
        assert "&lt;script&gt;" in html
        assert "ALERT" in html

    @pytest.mark.asyncio
    async def test_refuses_unresolved_recipient(self, mailer):
        with patch.object(mailer, "_deliver") as deliver:
            assert await mailer.send_welcome_email("user-7@unresolved.invalid", "there") is False
        deliver.assert_not_called()

    @pytest.mark.asyncio
    async def test_accepted_message(self, mailer):
        with patch.object(mailer, "_deliver") as deliver:
            assert await mailer.send_notification_email("ada@example.com", "Report ready", "alert") is True

        msg = deliver.call_args.args[0]
        assert msg["To"] == "ada@example.com"
        assert msg["From"] == "noreply@example.com"

    @pytest.mark.asyncio
    async def test_smtp_failure_returns_false(self, mailer):
        with patch.object(mailer, "_deliver", side_effect=smtplib.SMTPServerDisconnected("gone")):
            assert await mailer.send_notification_email("ada@example.com", "Report ready", "alert") is False

    @pytest.mark.asyncio
    async def test_connection_check(self, mailer):
        with patch.object(mailer, "_verify"):
            assert await mailer.test_connection() is True
        with patch.object(mailer, "_verify", side_effect=OSError("refused")):
            assert await mailer.test_connection() is False

    def test_open_uses_starttls_and_login(self):
        mailer = EmailService(
            host="smtp.example.com", port=587, username="bot", password="pw",
            sender="bot@example.com", use_ssl=False, starttls=True,
        )
        with patch("meshgate.services.email_service.smtplib.SMTP") as smtp_cls:
            smtp = MagicMock()
            smtp_cls.return_value = smtp
            assert mailer._open() is smtp

        smtp.starttls.assert_called_once()
        smtp.login.assert_called_once_with("bot", "pw")

    def test_open_closes_session_when_login_fails(self):
        mailer = EmailService(
            host="smtp.example.com", port=587, username="bot", password="wrong",
            sender="bot@example.com", use_ssl=False, starttls=True,
        )
        with patch("meshgate.services.email_service.smtplib.SMTP") as smtp_cls:
            smtp = MagicMock()
            smtp.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad credentials")
            smtp_cls.return_value = smtp

            with pytest.raises(smtplib.SMTPAuthenticationError):
                mailer._open()

        smtp.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_tls_failure_is_reported_and_session_closed(self):
        mailer = EmailService(
            host="smtp.example.com", port=587, username="", password="",
            sender="bot@example.com", use_ssl=False, starttls=True,
        )
        with patch("meshgate.services.email_service.smtplib.SMTP") as smtp_cls:
            smtp = MagicMock()
            smtp.starttls.side_effect = smtplib.SMTPNotSupportedError("STARTTLS extension not supported")
            smtp_cls.return_value = smtp

            assert await mailer.send_notification_email("ada@example.com", "Report ready", "alert") is False

        smtp.close.assert_called_once()
        smtp.send_message.assert_not_called()
