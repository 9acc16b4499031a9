"""Database connection management for Headless PM.

This module provides factory functions for creating SQLAlchemy async engines
and session factories, configured from the application's DatabaseConfig,
plus the ``transaction`` helper every mutating query runs inside.

The backing store is a single SQLite file driven through aiosqlite. WAL
journaling and a busy timeout let readers proceed while a short write
transaction holds the database lock.

Example usage:
    >>> from headless_pm.config import DatabaseConfig
    >>> from headless_pm.database.connection import get_engine, get_session_factory
    >>>
    >>> engine = get_engine(DatabaseConfig(data_dir=Path("/srv/pm")))
    >>> SessionFactory = get_session_factory(engine)
    >>>
    >>> async with SessionFactory() as session:
    ...     async with transaction(session):
    ...         session.add(project)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy import event
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from headless_pm.config import DatabaseConfig
from headless_pm.database.models.base import Base
from headless_pm.errors import (
    DuplicateEntryError,
    HeadlessPMError,
    InvalidInputError,
    StorageError,
)
from headless_pm.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = get_logger(__name__)


def _set_sqlite_pragmas(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def get_engine(config: DatabaseConfig) -> AsyncEngine:
    """Create an async SQLAlchemy engine from database configuration.

    Creates the ``{data_dir}/db`` directory when a file database is used.

    Args:
        config: Database configuration containing data dir or URL and
                SQL echo preference.

    Returns:
        Configured AsyncEngine instance.
    """
    if config.url is None:
        config.database_path.parent.mkdir(parents=True, exist_ok=True)

    engine = create_async_engine(config.database_url, echo=config.echo)

    if engine.dialect.name == "sqlite" and ":memory:" not in config.database_url:
        event.listen(engine.sync_engine, "connect", _set_sqlite_pragmas)

    return engine


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to the given engine.

    The returned factory produces AsyncSession instances configured with
    expire_on_commit=False so attributes remain readable after commit
    without triggering lazy loads.

    Args:
        engine: AsyncEngine to bind sessions to.

    Returns:
        Configured async_sessionmaker that produces AsyncSession instances.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_database(engine: AsyncEngine) -> None:
    """Create any missing tables for the current model metadata.

    Args:
        engine: Engine connected to the target database.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_schema_ready", tables=len(Base.metadata.tables))


@asynccontextmanager
async def transaction(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Run a block of writes atomically.

    Commits when the block exits normally and rolls back every write when
    it raises. A session that already auto-began a transaction for earlier
    reads has that transaction committed or rolled back the same way.
    Driver errors are re-raised as StorageError; domain errors propagate
    unchanged.

    Args:
        session: Session to run the writes on.

    Yields:
        The same session, for convenience.

    Raises:
        StorageError: If the database fails underneath the block.
    """
    try:
        if session.in_transaction():
            try:
                yield session
            except BaseException:
                await session.rollback()
                raise
            await session.commit()
        else:
            async with session.begin():
                yield session
    except HeadlessPMError:
        raise
    except IntegrityError as exc:
        logger.warning("database_integrity_error", error=str(exc.orig))
        if "UNIQUE" in str(exc.orig).upper():
            raise DuplicateEntryError("Entry already exists") from exc
        raise InvalidInputError("Invalid or missing field value") from exc
    except SQLAlchemyError as exc:
        logger.error("database_transaction_failed", error=str(exc), error_type=type(exc).__name__)
        raise StorageError("Database operation failed") from exc
