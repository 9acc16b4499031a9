"""Comment and Attachment models for Headless PM.

Both hang off a task and are removed together with it.
"""

from __future__ import annotations

from sqlalchemy import ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from headless_pm.database.models.base import Base, TimestampMixin


class Comment(TimestampMixin, Base):
    """A comment left on a task.

    Attributes:
        task_id: Task the comment belongs to.
        author: Display name of the author.
        content: Comment body.
    """

    __tablename__ = "comments"

    task_id: Mapped[int] = mapped_column(
        ForeignKey("tasks.id"),
        nullable=False,
        index=True,
    )
    author: Mapped[str] = mapped_column(Text, nullable=False, default="")
    content: Mapped[str] = mapped_column(Text, nullable=False)


class Attachment(TimestampMixin, Base):
    """A file stored under the upload directory and linked to a task.

    Attributes:
        task_id: Task the file is attached to.
        filename: Original file name.
        path: Blob path relative to the upload directory.
        size: Size in bytes.
        mime_type: Declared content type.
    """

    __tablename__ = "attachments"

    task_id: Mapped[int] = mapped_column(
        ForeignKey("tasks.id"),
        nullable=False,
        index=True,
    )
    filename: Mapped[str] = mapped_column(Text, nullable=False)
    path: Mapped[str] = mapped_column(Text, nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    mime_type: Mapped[str | None] = mapped_column(Text, nullable=True)
