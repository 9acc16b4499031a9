"""SQLAlchemy declarative base and common column mixins for Headless PM.

This module defines the DeclarativeBase class, a UTC-preserving datetime
column type, and a TimestampMixin that provides id, created_at, and
updated_at columns shared across most models.

SQLite stores datetimes without an offset, so UTCDateTime normalises
values to naive UTC on the way in and re-attaches ``timezone.utc`` on the
way out. Timestamps are generated client-side with microsecond precision
so that ordering by creation time and last-used stamps is strict.

Example:
    >>> class MyModel(TimestampMixin, Base):
    ...     __tablename__ = "my_table"
    ...     name: Mapped[str] = mapped_column(Text, nullable=False)
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import DateTime, Integer
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """DateTime column that always round-trips aware UTC values."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class Base(DeclarativeBase):
    """SQLAlchemy 2.0 declarative base for all Headless PM models."""

    type_annotation_map = {datetime: UTCDateTime}


class TimestampMixin:
    """Mixin providing id (integer), created_at, and updated_at columns.

    This mixin should be listed before Base in the class hierarchy
    to ensure the columns are included in the model's table definition.

    Attributes:
        id: Monotonic integer primary key.
        created_at: Timestamp set on row creation.
        updated_at: Timestamp set on row creation and on each modification.
    """

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utc_now,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utc_now,
        onupdate=utc_now,
        nullable=False,
    )
