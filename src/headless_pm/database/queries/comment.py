"""Comment and attachment query functions for Headless PM."""

from __future__ import annotations

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from headless_pm.database.connection import transaction
from headless_pm.database.models.comment import Attachment, Comment
from headless_pm.database.queries.activity import SYSTEM_ACTOR, Actor, record_activity
from headless_pm.database.queries.task import require_task
from headless_pm.errors import InvalidInputError, NotFoundError

logger = structlog.get_logger(__name__)


async def add_comment(
    session: AsyncSession,
    task_id: int,
    content: str,
    author: str | None = None,
    actor: Actor = SYSTEM_ACTOR,
) -> Comment:
    """Add a comment to a task.

    Args:
        session: Active async database session.
        task_id: Task to comment on.
        content: Comment body.
        author: Display name; defaults to the actor's name.
        actor: Who writes the comment.

    Returns:
        The new Comment.

    Raises:
        InvalidInputError: If the content is blank.
        NotFoundError: If the task does not exist.
    """
    if not content or not content.strip():
        raise InvalidInputError("content is required", field="content")

    async with transaction(session):
        task = await require_task(session, task_id)
        comment = Comment(task_id=task_id, author=author or actor.name, content=content)
        session.add(comment)
        await session.flush()
        record_activity(
            session,
            task,
            actor,
            action="commented",
            description=f"Comment added by {comment.author}",
        )
        await session.flush()
        await session.refresh(comment)

    logger.info("comment_added", comment_id=comment.id, task_id=task_id)
    return comment


async def list_comments(session: AsyncSession, task_id: int) -> list[Comment]:
    """List a task's comments, oldest first."""
    result = await session.execute(
        select(Comment).where(Comment.task_id == task_id).order_by(Comment.created_at, Comment.id)
    )
    return list(result.scalars().all())


async def get_comment(session: AsyncSession, comment_id: int) -> Comment | None:
    """Retrieve a comment by ID."""
    return await session.get(Comment, comment_id)


async def delete_comment(session: AsyncSession, comment_id: int) -> int:
    """Delete a comment.

    Returns:
        Id of the task the comment belonged to.

    Raises:
        NotFoundError: If the comment does not exist.
    """
    async with transaction(session):
        comment = await session.get(Comment, comment_id)
        if comment is None:
            raise NotFoundError("Comment not found", field="comment_id")
        task_id = comment.task_id
        await session.delete(comment)

    logger.info("comment_deleted", comment_id=comment_id, task_id=task_id)
    return task_id


async def comment_texts(session: AsyncSession, task_id: int) -> list[str]:
    """Comment bodies of a task in order, used to embed the task."""
    result = await session.execute(
        select(Comment.content).where(Comment.task_id == task_id).order_by(Comment.id)
    )
    return list(result.scalars().all())


async def create_attachment(
    session: AsyncSession,
    task_id: int,
    filename: str,
    path: str,
    size: int,
    mime_type: str | None = None,
    actor: Actor = SYSTEM_ACTOR,
) -> Attachment:
    """Record an attachment whose blob has already been written.

    Args:
        session: Active async database session.
        task_id: Task the file belongs to.
        filename: Original file name.
        path: Blob path relative to the upload directory.
        size: Size in bytes.
        mime_type: Declared content type.
        actor: Who uploads the file.

    Returns:
        The new Attachment.

    Raises:
        NotFoundError: If the task does not exist.
    """
    async with transaction(session):
        task = await require_task(session, task_id)
        attachment = Attachment(
            task_id=task_id,
            filename=filename,
            path=path,
            size=size,
            mime_type=mime_type,
        )
        session.add(attachment)
        await session.flush()
        record_activity(
            session,
            task,
            actor,
            action="attachment_added",
            description=f"Attachment '{filename}' added",
            new_value=filename,
        )
        await session.flush()
        await session.refresh(attachment)

    logger.info("attachment_created", attachment_id=attachment.id, task_id=task_id, size=size)
    return attachment


async def list_attachments(session: AsyncSession, task_id: int) -> list[Attachment]:
    """List a task's attachments, oldest first."""
    result = await session.execute(
        select(Attachment).where(Attachment.task_id == task_id).order_by(Attachment.id)
    )
    return list(result.scalars().all())


async def get_attachment(session: AsyncSession, attachment_id: int) -> Attachment | None:
    """Retrieve an attachment by ID."""
    return await session.get(Attachment, attachment_id)


async def delete_attachment(session: AsyncSession, attachment_id: int) -> str:
    """Delete an attachment row.

    Returns:
        The relative blob path, for the caller to remove from storage.

    Raises:
        NotFoundError: If the attachment does not exist.
    """
    async with transaction(session):
        attachment = await session.get(Attachment, attachment_id)
        if attachment is None:
            raise NotFoundError("Attachment not found", field="attachment_id")
        path = attachment.path
        await session.delete(attachment)

    logger.info("attachment_deleted", attachment_id=attachment_id)
    return path
