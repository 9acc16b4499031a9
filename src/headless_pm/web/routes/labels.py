"""Label endpoints for Headless PM."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from fastapi import APIRouter, Depends
from fastapi import status as http_status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from headless_pm.database.models.label import Label
from headless_pm.database.queries import label as label_queries
from headless_pm.database.queries import project as project_queries
from headless_pm.database.queries.task import require_task
from headless_pm.logging import get_logger
from headless_pm.web.auth import AuthContext, require_scopes
from headless_pm.web.dependencies import get_session_factory

logger = get_logger(__name__)


class LabelCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    color: str | None = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")


class LabelResponse(BaseModel):
    id: int
    project_id: int
    name: str
    color: str
    created_at: datetime

    model_config = {"from_attributes": True}


class TaskLabels(BaseModel):
    """Request schema replacing the labels of a task."""

    labels: list[str] = Field(default_factory=list)


def create_labels_router() -> APIRouter:
    """Create labels router.

    Routes:
        GET /api/projects/{project}/labels - List a project's labels
        POST /api/projects/{project}/labels - Create a label
        DELETE /api/labels/{label_id} - Delete a label
        GET /api/tasks/{task_id}/labels - Labels of a task
        PUT /api/tasks/{task_id}/labels - Replace the labels of a task
    """
    router = APIRouter(tags=["labels"])

    @router.get(
        "/api/projects/{project}/labels",
        response_model=list[LabelResponse],
        dependencies=[Depends(require_scopes("read"))],
    )
    async def list_labels(
        project: str,
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> list[Label]:
        async with session_factory() as session:
            found = await project_queries.resolve_project(session, project)
            return await label_queries.list_labels(session, project_id=found.id)

    @router.post(
        "/api/projects/{project}/labels",
        response_model=LabelResponse,
        status_code=http_status.HTTP_201_CREATED,
    )
    async def create_label(
        project: str,
        label_data: LabelCreate,
        auth: AuthContext = Depends(require_scopes("write")),  # noqa: B008
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> Label:
        async with session_factory() as session:
            found = await project_queries.resolve_project(session, project)
            return await label_queries.create_label(
                session, found.id, label_data.name, color=label_data.color
            )

    @router.delete("/api/labels/{label_id}", status_code=http_status.HTTP_204_NO_CONTENT)
    async def delete_label(
        label_id: int,
        auth: AuthContext = Depends(require_scopes("write")),  # noqa: B008
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> None:
        async with session_factory() as session:
            await label_queries.delete_label(session, label_id)

    @router.get(
        "/api/tasks/{task_id}/labels",
        response_model=list[LabelResponse],
        dependencies=[Depends(require_scopes("read"))],
    )
    async def get_task_labels(
        task_id: int,
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> list[Label]:
        async with session_factory() as session:
            await require_task(session, task_id)
            return await label_queries.get_task_labels(session, task_id)

    @router.put("/api/tasks/{task_id}/labels", response_model=list[LabelResponse])
    async def assign_labels(
        task_id: int,
        body: TaskLabels,
        auth: AuthContext = Depends(require_scopes("write")),  # noqa: B008
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> list[Label]:
        """Replace a task's labels; unknown names are created in its project."""
        async with session_factory() as session:
            labels = await label_queries.assign_labels_to_task(
                session, task_id, body.labels, actor=auth.actor
            )
        logger.info("task_labels_assigned_via_api", task_id=task_id, count=len(labels))
        return labels

    return router
