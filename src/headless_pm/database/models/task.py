"""Task model for Headless PM.

Defines the Task table, its status/priority enums, the TaskDependency
edge table, and the task_labels / task_watchers association tables.

Tasks form two graphs over integer ids: the subtask tree (``parent_id``)
and the dependency DAG (``task_dependencies``, edges pointing from a
successor to the predecessor it requires).
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Column,
    Float,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from headless_pm.database.models.base import Base, TimestampMixin, UTCDateTime, utc_now


class TaskStatus(enum.Enum):
    """Board columns a task moves through.

    States:
        todo: Not started.
        in_progress: Being worked on.
        review: Work complete, pending review.
        done: Finished; ``completed_at`` is set.
        cancelled: Abandoned.
    """

    todo = "todo"
    in_progress = "in_progress"
    review = "review"
    done = "done"
    cancelled = "cancelled"


class TaskPriority(enum.Enum):
    """Task priority levels."""

    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


# Lower rank sorts first on the board
PRIORITY_RANK: dict[TaskPriority, int] = {
    TaskPriority.urgent: 0,
    TaskPriority.high: 1,
    TaskPriority.medium: 2,
    TaskPriority.low: 3,
}


class DependencyType(enum.Enum):
    """Readiness rule carried by a dependency edge.

    Types:
        finish_to_start: Predecessor must be done before the successor starts.
        start_to_start: Predecessor must have left ``todo``.
    """

    finish_to_start = "finish_to_start"
    start_to_start = "start_to_start"


task_labels = Table(
    "task_labels",
    Base.metadata,
    Column("task_id", Integer, ForeignKey("tasks.id"), primary_key=True),
    Column("label_id", Integer, ForeignKey("labels.id"), primary_key=True),
)

task_watchers = Table(
    "task_watchers",
    Base.metadata,
    Column("task_id", Integer, ForeignKey("tasks.id"), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id"), primary_key=True),
)


class Task(TimestampMixin, Base):
    """A unit of work inside a project.

    Attributes:
        id: Integer primary key (from TimestampMixin).
        project_id: Owning project.
        parent_id: Optional parent task in the same project.
        epic_id: Optional epic in the same project.
        title: Short description of the task.
        description: Detailed description.
        status: Board column.
        priority: Priority level.
        assignee: Free-text display name of the assignee.
        assignee_id: Optional assigned user.
        estimated_hours: Planning estimate.
        actual_hours: Time spent.
        story_points: Relative size estimate.
        due_date: Optional deadline.
        start_date: Optional planned start.
        completed_at: Set iff status is done.
        created_by: Creating user id; 0 is the system/admin sentinel.
        updated_by: Last modifying user id.
    """

    __tablename__ = "tasks"

    project_id: Mapped[int] = mapped_column(
        ForeignKey("projects.id"),
        nullable=False,
        index=True,
    )
    parent_id: Mapped[int | None] = mapped_column(
        ForeignKey("tasks.id"),
        nullable=True,
        index=True,
    )
    epic_id: Mapped[int | None] = mapped_column(
        ForeignKey("epics.id"),
        nullable=True,
        index=True,
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[TaskStatus] = mapped_column(
        default=TaskStatus.todo,
        nullable=False,
        index=True,
    )
    priority: Mapped[TaskPriority] = mapped_column(
        default=TaskPriority.medium,
        nullable=False,
    )
    assignee: Mapped[str | None] = mapped_column(Text, nullable=True)
    assignee_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id"),
        nullable=True,
        index=True,
    )
    estimated_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    actual_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    story_points: Mapped[int | None] = mapped_column(Integer, nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(nullable=True)
    start_date: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_by: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_by: Mapped[int | None] = mapped_column(Integer, nullable=True)

    def embedding_text(self, comments: list[str]) -> str:
        """Text used to embed this task for semantic search."""
        parts = [self.title, self.description or "", *comments]
        return "\n".join(p for p in parts if p)

    def __repr__(self) -> str:
        return f"<Task id={self.id} project_id={self.project_id} status={self.status.value}>"


class TaskDependency(Base):
    """Edge stating that ``task_id`` requires ``depends_on_id``.

    The ``type`` column is stored as free text so rows written by newer
    releases with unknown kinds can still be read; such rows are rejected
    when readiness is evaluated.

    Attributes:
        id: Integer primary key.
        task_id: Successor task.
        depends_on_id: Predecessor task.
        type: Dependency kind (see DependencyType).
        created_at: Row creation timestamp.
    """

    __tablename__ = "task_dependencies"
    __table_args__ = (
        UniqueConstraint("task_id", "depends_on_id", name="uq_task_dependency"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task_id: Mapped[int] = mapped_column(
        ForeignKey("tasks.id"),
        nullable=False,
        index=True,
    )
    depends_on_id: Mapped[int] = mapped_column(
        ForeignKey("tasks.id"),
        nullable=False,
        index=True,
    )
    type: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=DependencyType.finish_to_start.value,
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utc_now,
        nullable=False,
    )
