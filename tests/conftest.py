"""
MeshGate — Test Configuration (conftest.py)
===========================================

What:  Shared pytest fixtures for the whole suite.
How:   pytest auto-discovers conftest.py and makes fixtures available to all
       tests. Environment overrides are applied before anything imports
       meshgate.config, so the settings singleton sees them.

Fixture Hierarchy:
    Function-scoped (created fresh for each test):
    ├── database:      Database on a private in-memory SQLite store
    ├── db_session:    One AsyncSession on that store
    ├── mailer:        FakeMailer recording every delivery
    ├── directory:     FakeDirectory standing in for the user service
    ├── notification_service / user_service
    ├── dispatcher:    AsyncMock shaped like GatewayDispatcher
    ├── orchestrator:  AsyncMock shaped like RegistrationOrchestrator
    └── test_client:   HTTPX AsyncClient bound to a fresh gateway app
"""

import os
from datetime import datetime, timezone
from typing import Dict, Optional
from unittest.mock import AsyncMock

# ══════════════════════════════════════════════════════════════════════════
# Environment Setup
# ══════════════════════════════════════════════════════════════════════════

# Must run before any meshgate import
os.environ["USER_DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["NOTIFICATION_DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["RETRY_BASE_DELAY"] = "0"
os.environ["SMTP_USERNAME"] = ""
os.environ["SMTP_PASSWORD"] = ""

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from meshgate.database import Database  # noqa: E402
from meshgate.gateway.dispatcher import GatewayDispatcher  # noqa: E402
from meshgate.gateway.registration import RegistrationOrchestrator  # noqa: E402
from meshgate.schemas.user import UserResponse  # noqa: E402
from meshgate.services.notification_service import NotificationService  # noqa: E402
from meshgate.services.user_service import UserService  # noqa: E402


# ══════════════════════════════════════════════════════════════════════════
# Test Doubles
# ══════════════════════════════════════════════════════════════════════════

class FakeMailer:
    """
    Records deliveries instead of talking to SMTP.

    Refuses `.invalid` recipients like the real EmailService, plus any
    address listed in `failing`.
    """

    def __init__(self, connection_ok: bool = True):
        self.sent = []
        self.failing = set()
        self.connection_ok = connection_ok

    def _accept(self, to: str) -> bool:
        return not to.endswith(".invalid") and to not in self.failing

    async def send_welcome_email(self, to: str, first_name: str) -> bool:
        if not self._accept(to):
            return False
        self.sent.append(("welcome", to, first_name))
        return True

    async def send_notification_email(self, to: str, message: str, notification_type: str) -> bool:
        if not self._accept(to):
            return False
        self.sent.append((notification_type, to, message))
        return True

    async def test_connection(self) -> bool:
        return self.connection_ok


class FakeDirectory:
    """In-memory user lookup; `error` makes every lookup raise it."""

    def __init__(self):
        self.users: Dict[int, UserResponse] = {}
        self.error: Optional[Exception] = None
        self.lookups = []

    def add(self, user_id: int, email: str, first_name: str = "Ada", last_name: str = "Lovelace") -> UserResponse:
        now = datetime.now(timezone.utc)
        user = UserResponse(
            id=user_id, email=email, first_name=first_name, last_name=last_name,
            created_at=now, updated_at=now,
        )
        self.users[user_id] = user
        return user

    async def get_user(self, user_id: int) -> Optional[UserResponse]:
        self.lookups.append(user_id)
        if self.error is not None:
            raise self.error
        return self.users.get(user_id)


def user_payload(user_id: int = 1, email: str = "ada@example.com", **overrides) -> dict:
    """JSON shape of a UserResponse as it arrives over the transport."""
    payload = {
        "id": user_id,
        "email": email,
        "first_name": "Ada",
        "last_name": "Lovelace",
        "created_at": "2026-10-01T12:00:00+00:00",
        "updated_at": "2026-10-01T12:00:00+00:00",
    }
    payload.update(overrides)
    return payload


def notification_payload(notification_id: str, user_id: str = "1", **overrides) -> dict:
    payload = {
        "id": notification_id,
        "user_id": user_id,
        "type": "welcome",
        "message": "Welcome Ada! Your account has been created successfully.",
        "status": "sent",
        "created_at": "2026-10-01T12:00:00+00:00",
        "sent_at": "2026-10-01T12:00:01+00:00",
        "correlation_id": None,
    }
    payload.update(overrides)
    return payload


# ══════════════════════════════════════════════════════════════════════════
# Persistence Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def database():
    """
    A private in-memory SQLite store with every table created.

    StaticPool keeps one connection alive, so the in-memory database
    survives across sessions within a test.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    db = Database(engine=engine)
    await db.create_all()
    yield db
    await db.dispose()


@pytest_asyncio.fixture
async def db_session(database):
    async with database.session_factory() as session:
        yield session


# ══════════════════════════════════════════════════════════════════════════
# Service Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def directory():
    return FakeDirectory()


@pytest.fixture
def notification_service(mailer, directory):
    return NotificationService(mailer=mailer, directory=directory)


@pytest.fixture
def user_service():
    return UserService()


# ══════════════════════════════════════════════════════════════════════════
# Gateway Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def dispatcher():
    return AsyncMock(spec=GatewayDispatcher)


@pytest.fixture
def orchestrator():
    return AsyncMock(spec=RegistrationOrchestrator)


@pytest_asyncio.fixture
async def test_client(dispatcher, orchestrator):
    """
    HTTPX AsyncClient talking to a fresh gateway app.

    ASGITransport does not run the lifespan, so the dispatcher and the
    orchestrator are supplied through dependency overrides.

    Usage:
        async def test_health(test_client, dispatcher):
            dispatcher.probe.return_value = {"user": "reachable"}
            response = await test_client.get("/health")
    """
    from meshgate.gateway.app import create_app
    from meshgate.gateway.dependencies import get_dispatcher, get_orchestrator

    app = create_app()
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
