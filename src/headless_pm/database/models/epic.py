"""Epic model for Headless PM.

Epics group tasks of a single project; their ``progress`` is the share
of member tasks that are done.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from headless_pm.database.models.base import Base, TimestampMixin


class EpicStatus(enum.Enum):
    """Lifecycle states for an epic."""

    planned = "planned"
    active = "active"
    completed = "completed"
    cancelled = "cancelled"


class Epic(TimestampMixin, Base):
    """A group of related tasks within a project.

    Attributes:
        id: Integer primary key (from TimestampMixin).
        project_id: Owning project.
        name: Epic name.
        description: Free-text description.
        status: Lifecycle status.
        progress: Percentage (0-100) of member tasks that are done.
        start_date: Optional planned start.
        end_date: Optional planned end.
    """

    __tablename__ = "epics"

    project_id: Mapped[int] = mapped_column(
        ForeignKey("projects.id"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[EpicStatus] = mapped_column(
        default=EpicStatus.planned,
        nullable=False,
    )
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    start_date: Mapped[datetime | None] = mapped_column(nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(nullable=True)
