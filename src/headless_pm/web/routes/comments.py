"""Comment and attachment endpoints for Headless PM.

Attachments are uploaded as JSON with base64 content. The blob is written
first and the row afterwards; when the row cannot be written the blob is
removed again.
"""

from __future__ import annotations

import base64
import binascii
from collections.abc import Callable
from datetime import datetime

from fastapi import APIRouter, Depends, Request
from fastapi import status as http_status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from headless_pm.database.models.comment import Attachment, Comment
from headless_pm.database.models.embedding import EntityKind
from headless_pm.database.queries import comment as comment_queries
from headless_pm.database.queries.task import require_task
from headless_pm.errors import HeadlessPMError, InvalidInputError
from headless_pm.logging import get_logger
from headless_pm.storage import AttachmentStorage
from headless_pm.web.auth import AuthContext, require_scopes
from headless_pm.web.dependencies import get_session_factory, get_storage, queue_embeddings

logger = get_logger(__name__)


class CommentCreate(BaseModel):
    content: str = Field(..., min_length=1)
    author: str | None = None


class CommentResponse(BaseModel):
    id: int
    task_id: int
    author: str
    content: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class AttachmentCreate(BaseModel):
    """Request schema for uploading an attachment.

    Attributes:
        filename: Original file name; directory parts are stripped.
        content_base64: File content, base64 encoded.
        mime_type: Optional content type.
    """

    filename: str = Field(..., min_length=1)
    content_base64: str
    mime_type: str | None = None


class AttachmentResponse(BaseModel):
    id: int
    task_id: int
    filename: str
    path: str
    size: int
    mime_type: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


def create_comments_router() -> APIRouter:
    """Create comments router.

    Routes:
        GET /api/tasks/{task_id}/comments - List comments
        POST /api/tasks/{task_id}/comments - Add a comment
        DELETE /api/comments/{comment_id} - Delete a comment
        GET /api/tasks/{task_id}/attachments - List attachments
        POST /api/tasks/{task_id}/attachments - Upload an attachment
        DELETE /api/attachments/{attachment_id} - Delete an attachment
    """
    router = APIRouter(tags=["comments"])

    @router.get(
        "/api/tasks/{task_id}/comments",
        response_model=list[CommentResponse],
        dependencies=[Depends(require_scopes("read"))],
    )
    async def list_comments(
        task_id: int,
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> list[Comment]:
        async with session_factory() as session:
            await require_task(session, task_id)
            return await comment_queries.list_comments(session, task_id)

    @router.post(
        "/api/tasks/{task_id}/comments",
        response_model=CommentResponse,
        status_code=http_status.HTTP_201_CREATED,
    )
    async def add_comment(
        task_id: int,
        comment_data: CommentCreate,
        request: Request,
        auth: AuthContext = Depends(require_scopes("write")),  # noqa: B008
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> Comment:
        async with session_factory() as session:
            comment = await comment_queries.add_comment(
                session,
                task_id,
                comment_data.content,
                author=comment_data.author,
                actor=auth.actor,
            )
        queue_embeddings(request, (EntityKind.task, task_id))
        return comment

    @router.delete("/api/comments/{comment_id}", status_code=http_status.HTTP_204_NO_CONTENT)
    async def delete_comment(
        comment_id: int,
        request: Request,
        auth: AuthContext = Depends(require_scopes("write")),  # noqa: B008
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> None:
        async with session_factory() as session:
            task_id = await comment_queries.delete_comment(session, comment_id)
        queue_embeddings(request, (EntityKind.task, task_id))

    @router.get(
        "/api/tasks/{task_id}/attachments",
        response_model=list[AttachmentResponse],
        dependencies=[Depends(require_scopes("read"))],
    )
    async def list_attachments(
        task_id: int,
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> list[Attachment]:
        async with session_factory() as session:
            await require_task(session, task_id)
            return await comment_queries.list_attachments(session, task_id)

    @router.post(
        "/api/tasks/{task_id}/attachments",
        response_model=AttachmentResponse,
        status_code=http_status.HTTP_201_CREATED,
    )
    async def upload_attachment(
        task_id: int,
        upload: AttachmentCreate,
        auth: AuthContext = Depends(require_scopes("write")),  # noqa: B008
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
        storage: AttachmentStorage = Depends(get_storage),  # noqa: B008
    ) -> Attachment:
        """Store a file for a task."""
        try:
            data = base64.b64decode(upload.content_base64, validate=True)
        except (binascii.Error, ValueError):
            raise InvalidInputError("content_base64 is not valid base64", field="content_base64") from None

        async with session_factory() as session:
            task = await require_task(session, task_id)
            project_id = task.project_id

        path = storage.save(project_id, task_id, upload.filename, data)
        try:
            async with session_factory() as session:
                attachment = await comment_queries.create_attachment(
                    session,
                    task_id,
                    filename=upload.filename,
                    path=path,
                    size=len(data),
                    mime_type=upload.mime_type,
                    actor=auth.actor,
                )
        except HeadlessPMError:
            storage.delete(path)
            raise

        logger.info("attachment_uploaded_via_api", attachment_id=attachment.id, task_id=task_id)
        return attachment

    @router.delete("/api/attachments/{attachment_id}", status_code=http_status.HTTP_204_NO_CONTENT)
    async def delete_attachment(
        attachment_id: int,
        auth: AuthContext = Depends(require_scopes("write")),  # noqa: B008
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
        storage: AttachmentStorage = Depends(get_storage),  # noqa: B008
    ) -> None:
        async with session_factory() as session:
            path = await comment_queries.delete_attachment(session, attachment_id)
        storage.delete(path)

    return router
