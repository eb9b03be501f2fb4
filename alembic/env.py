"""
Alembic Migration Environment
===============================

What:  Configures Alembic for the async SQLAlchemy stores.
How:   Builds an async engine from our settings and runs the migrations
       inside connection.run_sync().
Who:   Called by `alembic` CLI commands (upgrade, downgrade, revision).

Target store:
    USER_DATABASE_URL by default. Set MIGRATION_TARGET=notification to
    migrate the notification store when the two services use separate
    databases; in the shared development database one run covers both.
"""

import asyncio
import os
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.ext.asyncio import async_engine_from_config
from alembic import context

from meshgate.config import settings
from meshgate.database import Base

# Registers every model on Base.metadata for --autogenerate
from meshgate.models.notification import Notification  # noqa: F401
from meshgate.models.user import User  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

if os.environ.get("MIGRATION_TARGET", "user") == "notification":
    config.set_main_option("sqlalchemy.url", settings.notification_database_url)
else:
    config.set_main_option("sqlalchemy.url", settings.user_database_url)


def run_migrations_offline() -> None:
    """Emit SQL to stdout without connecting to the database."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection):
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """
    Connect with an async engine and apply pending migrations.

    No pooling: a migration run opens exactly one connection.
    """
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


def run_migrations_online() -> None:
    asyncio.run(run_async_migrations())


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
