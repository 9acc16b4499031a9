"""Project model for Headless PM.

Defines the Project table, the ProjectStatus enum, and the
project_members association table linking users to projects.
"""

from __future__ import annotations

import enum

from sqlalchemy import Column, ForeignKey, Integer, String, Table, Text
from sqlalchemy.orm import Mapped, mapped_column

from headless_pm.database.models.base import Base, TimestampMixin, UTCDateTime, utc_now


class ProjectStatus(enum.Enum):
    """Lifecycle states for a project.

    States:
        active: Project is in use and visible to name lookups.
        archived: Project is retained read-only; its name may be reused.
        draft: Project is being set up.
    """

    active = "active"
    archived = "archived"
    draft = "draft"


project_members = Table(
    "project_members",
    Base.metadata,
    Column("project_id", Integer, ForeignKey("projects.id"), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id"), primary_key=True),
    Column("role", String(32), nullable=False, default="member"),
    Column("joined_at", UTCDateTime, nullable=False, default=utc_now),
)


class Project(TimestampMixin, Base):
    """A top-level container of epics, tasks and labels.

    Attributes:
        id: Integer primary key (from TimestampMixin).
        name: Project name, unique among non-archived projects.
        description: Free-text description.
        status: Current lifecycle status.
        owner_id: User that owns the project; nulled when that user is deleted.
    """

    __tablename__ = "projects"

    name: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[ProjectStatus] = mapped_column(
        default=ProjectStatus.active,
        nullable=False,
    )
    owner_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id"),
        nullable=True,
    )

    def embedding_text(self, task_titles: list[str]) -> str:
        """Text used to embed this project for semantic search."""
        parts = [self.name, self.description or "", *task_titles]
        return "\n".join(p for p in parts if p)

    def __repr__(self) -> str:
        return f"<Project id={self.id} name={self.name!r}>"
