"""
MeshGate — Database Session Management
=======================================

What:  Async SQLAlchemy engine + session factory, one per owning service.
How:   `Database` wraps an engine and an async_sessionmaker. `session()` is an
       async context manager that commits on success and rolls back on error,
       the same contract the handlers rely on for every unit of work.
Who:   The user service builds a Database from USER_DATABASE_URL, the
       notification service from NOTIFICATION_DATABASE_URL. Tests build one
       on an in-memory SQLite database.

Connection Pooling (PostgreSQL):
    pool_size / max_overflow from settings, pre-ping to catch stale
    connections, hourly recycle. SQLite URLs skip the pool arguments.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from meshgate.config import settings


class Base(DeclarativeBase):
    """
    Base class for all ORM models.

    Both services' tables share this metadata so Alembic sees the full
    schema; at runtime each service only touches its own tables.
    """
    pass


def _engine_options(url: str) -> Dict[str, Any]:
    if url.startswith("sqlite"):
        return {"echo": settings.log_level == "DEBUG"}
    return {
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_pre_ping": settings.db_pool_pre_ping,
        "pool_recycle": 3600,
        "echo": settings.log_level == "DEBUG",
    }


class Database:
    """
    Engine and session factory for one service's store.

    Args:
        url:     Async database URL (postgresql+asyncpg://... or sqlite+aiosqlite://...)
        engine:  Pre-built engine (tests pass one bound to a StaticPool)
    """

    def __init__(self, url: Optional[str] = None, engine: Optional[AsyncEngine] = None):
        if engine is None:
            if url is None:
                raise ValueError("Database needs either a url or an engine")
            engine = create_async_engine(url, **_engine_options(url))
        self.engine = engine
        # expire_on_commit=False: handlers read attributes after commit to
        # build responses
        self.session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        One unit of work.

        1. Opens a session
        2. Yields it to the caller
        3. Commits on success, rolls back on any exception (and re-raises)
        4. Always closes the session
        """
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def create_all(self) -> None:
        """Create missing tables (development and tests)."""
        # Registers the models on Base.metadata
        from meshgate.models import notification, user  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        """Close every pooled connection (service shutdown)."""
        await self.engine.dispose()
