"""
MeshGate — Email Service
========================

What:  Renders and delivers notification emails over SMTP.
How:   Jinja2 templates (autoescaped, so user-supplied messages cannot inject
       markup) and smtplib. smtplib is blocking, so every SMTP session runs in
       a worker thread via asyncio.to_thread.
Who:   NotificationService (send / retry) and the test-email handler.

Delivery contract:
    send_* methods return True when the SMTP server accepted the message and
    False otherwise. They never raise; the caller records the outcome on the
    notification row.

Addresses under the reserved `.invalid` TLD are refused without opening a
connection: the notification service uses one as a placeholder when it
cannot resolve a user's address.
"""

import asyncio
import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Optional

from jinja2 import Environment, PackageLoader, select_autoescape

from meshgate.config import settings

logger = logging.getLogger(__name__)

UNRESOLVED_SUFFIX = ".invalid"


class EmailService:
    """
    SMTP mailer.

    Every argument defaults to the matching SMTP_* setting.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        sender: Optional[str] = None,
        use_ssl: Optional[bool] = None,
        starttls: Optional[bool] = None,
        timeout: Optional[float] = None,
    ):
        self.host = host or settings.smtp_host
        self.port = port or settings.smtp_port
        self.username = username if username is not None else settings.smtp_username
        self.password = password if password is not None else settings.smtp_password
        self.sender = sender or settings.smtp_sender
        self.use_ssl = settings.smtp_use_ssl if use_ssl is None else use_ssl
        self.starttls = settings.smtp_starttls if starttls is None else starttls
        self.timeout = timeout or settings.smtp_timeout

        self.templates = Environment(
            loader=PackageLoader("meshgate", "templates"),
            autoescape=select_autoescape(["html"]),
        )

    # ── Rendering ─────────────────────────────────────────────────────────

    def render_welcome(self, first_name: str) -> str:
        return self.templates.get_template("welcome.html").render(
            heading=settings.welcome_subject,
            first_name=first_name,
        )

    def render_notification(self, message: str, notification_type: str) -> str:
        return self.templates.get_template("notification.html").render(
            heading=settings.notification_subject,
            message=message,
            type=notification_type,
        )

    # ── Sending ───────────────────────────────────────────────────────────

    async def send_welcome_email(self, to: str, first_name: str) -> bool:
        return await self.send_email(
            to=to,
            subject=settings.welcome_subject,
            html=self.render_welcome(first_name),
            text=f"Hello {first_name}! Welcome to our platform. Your account has been successfully created.",
        )

    async def send_notification_email(self, to: str, message: str, notification_type: str) -> bool:
        return await self.send_email(
            to=to,
            subject=settings.notification_subject,
            html=self.render_notification(message, notification_type),
            text=f"[{notification_type.upper()}] {message}",
        )

    async def send_email(self, to: str, subject: str, html: str, text: Optional[str] = None) -> bool:
        """
        Deliver one message.

        Returns:
            True if the server accepted it, False on any SMTP or network error
        """
        if to.lower().endswith(UNRESOLVED_SUFFIX):
            logger.warning("Not sending '%s': recipient %s is unresolved", subject, to)
            return False

        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(text or subject)
        msg.add_alternative(html, subtype="html")

        logger.info("Sending email to %s, subject: %s", to, subject)
        try:
            await asyncio.to_thread(self._deliver, msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send email to %s: %s", to, e)
            return False

        logger.info("Email sent to %s", to)
        return True

    async def test_connection(self) -> bool:
        """Open an SMTP session, authenticate and issue NOOP."""
        try:
            await asyncio.to_thread(self._verify)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Email connection test failed: %s", e)
            return False
        logger.info("Email connection test successful")
        return True

    # ── Blocking helpers (run in a worker thread) ─────────────────────────

    def _open(self) -> smtplib.SMTP:
        context = ssl.create_default_context()
        if self.use_ssl:
            smtp = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout, context=context)
        else:
            smtp = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        try:
            if self.starttls and not self.use_ssl:
                smtp.starttls(context=context)
            if self.username:
                smtp.login(self.username, self.password)
        except (smtplib.SMTPException, OSError):
            smtp.close()
            raise
        return smtp

    def _deliver(self, msg: EmailMessage) -> None:
        with self._open() as smtp:
            smtp.send_message(msg)

    def _verify(self) -> None:
        with self._open() as smtp:
            smtp.noop()
