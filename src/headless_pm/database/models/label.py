"""Label model for Headless PM."""

from __future__ import annotations

from sqlalchemy import ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from headless_pm.database.models.base import Base, TimestampMixin


class Label(TimestampMixin, Base):
    """A project-scoped tag attached to tasks through ``task_labels``.

    Attributes:
        project_id: Owning project.
        name: Label name, unique within the project.
        color: Hex colour such as ``#2563EB``.
    """

    __tablename__ = "labels"
    __table_args__ = (
        UniqueConstraint("project_id", "name", name="uq_label_project_name"),
    )

    project_id: Mapped[int] = mapped_column(
        ForeignKey("projects.id"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    color: Mapped[str] = mapped_column(String(16), nullable=False, default="#6B7280")
