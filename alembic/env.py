"""Alembic environment configuration for Headless PM.

This module configures Alembic to work with SQLAlchemy's async engine
(aiosqlite driver) and loads the database URL from HeadlessPMConfig.

Supports both online (connected to database) and offline (SQL script
generation) migration modes. SQLite cannot alter most column or
constraint definitions in place, so migrations run in batch mode.
"""

from __future__ import annotations

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

import headless_pm.database.models  # noqa: F401  (populates Base.metadata)
from headless_pm.config import load_config
from headless_pm.database.models.base import Base

# Alembic Config object for access to .ini values
config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Load Headless PM config and set the database URL
headless_pm_config = load_config()
config.set_main_option("sqlalchemy.url", headless_pm_config.database.database_url)

# Target metadata for autogenerate support
target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode.

    Generates SQL scripts without connecting to the database.
    """
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    """Execute migrations against the provided connection.

    Args:
        connection: Active database connection to run migrations on.
    """
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        render_as_batch=True,
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """Run migrations in 'online' mode using an async engine."""
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
