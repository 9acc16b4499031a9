"""Activity log model for Headless PM."""

from __future__ import annotations

from sqlalchemy import ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from headless_pm.database.models.base import Base, TimestampMixin


class Activity(TimestampMixin, Base):
    """One recorded change to a task.

    Written in the same transaction as the change it describes and
    removed together with the task.

    Attributes:
        task_id: Task that changed.
        project_id: Project of the task.
        user_id: Acting user id (0 for admin/system).
        user_name: Display name of the actor.
        action: created, updated, status_changed, assigned, priority_changed,
            commented, dependency_added, dependency_removed or attachment_added.
        field_name: Changed field, when the action concerns one field.
        old_value: Previous value rendered as text.
        new_value: New value rendered as text.
        description: Human-readable summary.
    """

    __tablename__ = "activities"

    task_id: Mapped[int] = mapped_column(
        ForeignKey("tasks.id"),
        nullable=False,
        index=True,
    )
    project_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    user_name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    action: Mapped[str] = mapped_column(Text, nullable=False)
    field_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    old_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    new_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
