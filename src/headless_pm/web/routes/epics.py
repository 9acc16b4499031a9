"""Epic endpoints for Headless PM.

Epics group tasks of one project; ``progress`` is maintained by the task
queries and is read-only here.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from fastapi import APIRouter, Depends, Request
from fastapi import status as http_status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from headless_pm.database.models.embedding import EntityKind
from headless_pm.database.models.epic import Epic, EpicStatus
from headless_pm.database.queries import epic as epic_queries
from headless_pm.database.queries import project as project_queries
from headless_pm.errors import NotFoundError
from headless_pm.logging import get_logger
from headless_pm.storage import AttachmentStorage
from headless_pm.web.auth import AuthContext, require_scopes
from headless_pm.web.dependencies import (
    get_max_depth,
    get_session_factory,
    get_storage,
    queue_embeddings,
)

logger = get_logger(__name__)


class EpicCreate(BaseModel):
    """Request schema for creating an epic."""

    name: str = Field(..., min_length=1)
    description: str | None = None
    status: str = "planned"
    start_date: datetime | None = None
    end_date: datetime | None = None


class EpicUpdate(BaseModel):
    """Request schema for updating an epic; only provided fields change."""

    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    status: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None


class EpicResponse(BaseModel):
    id: int
    project_id: int
    name: str
    description: str | None
    status: EpicStatus
    progress: int
    start_date: datetime | None
    end_date: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


def create_epics_router() -> APIRouter:
    """Create epics router.

    Routes:
        GET /api/projects/{project}/epics - List a project's epics
        POST /api/projects/{project}/epics - Create an epic
        GET /api/epics/{epic_id} - Get an epic
        PUT /api/epics/{epic_id} - Update an epic
        DELETE /api/epics/{epic_id}?cascade=true - Delete an epic
    """
    router = APIRouter(tags=["epics"])

    @router.get(
        "/api/projects/{project}/epics",
        response_model=list[EpicResponse],
        dependencies=[Depends(require_scopes("read"))],
    )
    async def list_epics(
        project: str,
        status: str | None = None,
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> list[Epic]:
        status_enum = epic_queries.parse_epic_status(status) if status else None
        async with session_factory() as session:
            found = await project_queries.resolve_project(session, project)
            return await epic_queries.list_epics(session, project_id=found.id, status=status_enum)

    @router.post(
        "/api/projects/{project}/epics",
        response_model=EpicResponse,
        status_code=http_status.HTTP_201_CREATED,
    )
    async def create_epic(
        project: str,
        epic_data: EpicCreate,
        auth: AuthContext = Depends(require_scopes("write")),  # noqa: B008
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> Epic:
        async with session_factory() as session:
            found = await project_queries.resolve_project(session, project)
            epic = await epic_queries.create_epic(
                session,
                project_id=found.id,
                name=epic_data.name,
                description=epic_data.description,
                status=epic_data.status,
                start_date=epic_data.start_date,
                end_date=epic_data.end_date,
            )
        logger.info("epic_created_via_api", epic_id=epic.id, project_id=found.id)
        return epic

    @router.get(
        "/api/epics/{epic_id}",
        response_model=EpicResponse,
        dependencies=[Depends(require_scopes("read"))],
    )
    async def get_epic(
        epic_id: int,
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> Epic:
        async with session_factory() as session:
            epic = await epic_queries.get_epic(session, epic_id)
        if epic is None:
            raise NotFoundError("Epic not found", field="epic_id")
        return epic

    @router.put("/api/epics/{epic_id}", response_model=EpicResponse)
    async def update_epic(
        epic_id: int,
        epic_data: EpicUpdate,
        auth: AuthContext = Depends(require_scopes("write")),  # noqa: B008
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> Epic:
        async with session_factory() as session:
            return await epic_queries.update_epic(
                session, epic_id, epic_data.model_dump(exclude_unset=True)
            )

    @router.delete("/api/epics/{epic_id}", status_code=http_status.HTTP_204_NO_CONTENT)
    async def delete_epic(
        epic_id: int,
        request: Request,
        cascade: bool = False,
        auth: AuthContext = Depends(require_scopes("write")),  # noqa: B008
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
        storage: AttachmentStorage = Depends(get_storage),  # noqa: B008
    ) -> None:
        """Delete an epic; with ``cascade`` its member tasks go too."""
        async with session_factory() as session:
            epic = await epic_queries.get_epic(session, epic_id)
            if epic is None:
                raise NotFoundError("Epic not found", field="epic_id")
            project_id = epic.project_id
            outcome = await epic_queries.delete_epic(
                session,
                epic_id,
                cascade_tasks=cascade,
                max_depth=get_max_depth(request),
            )

        storage.delete_many(outcome.attachment_paths)
        if outcome.task_ids:
            queue_embeddings(request, (EntityKind.project, project_id))
        logger.info("epic_deleted_via_api", epic_id=epic_id, cascade=cascade)

    return router
