"""Database layer for Headless PM.

This module handles database connections, session management, and the
SQLAlchemy async engine configuration for the embedded SQLite store.

Public API:
    get_engine: Create an AsyncEngine from DatabaseConfig.
    get_session_factory: Create an async_sessionmaker from an engine.
    init_database: Create missing tables.
    transaction: Atomic write block used by every mutating query.
    Base: SQLAlchemy declarative base for all models.
"""

from headless_pm.database.connection import (
    get_engine,
    get_session_factory,
    init_database,
    transaction,
)
from headless_pm.database.models import Base

__all__ = [
    "get_engine",
    "get_session_factory",
    "init_database",
    "transaction",
    "Base",
]
