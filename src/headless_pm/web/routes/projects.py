"""Project endpoints for Headless PM.

This module provides REST API endpoints for managing Project resources:
- List, create, read, update and delete projects
- List the users involved in a project
- Read a project's dependency graph

The ``{project}`` path segment accepts either a numeric id or the name of
a non-archived project.

Example:
    >>> from fastapi import FastAPI
    >>> from headless_pm.web.routes.projects import create_projects_router
    >>>
    >>> app = FastAPI()
    >>> app.include_router(create_projects_router())
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi import status as http_status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from headless_pm.database.models.embedding import EntityKind
from headless_pm.database.models.project import ProjectStatus
from headless_pm.database.queries import project as project_queries
from headless_pm.graph.dependencies import DependencyEngine
from headless_pm.logging import get_logger
from headless_pm.storage import AttachmentStorage
from headless_pm.web.auth import AuthContext, require_scopes
from headless_pm.web.dependencies import (
    get_dependency_engine,
    get_session_factory,
    get_storage,
    queue_embeddings,
)
from headless_pm.web.routes.users import UserResponse

logger = get_logger(__name__)


class ProjectCreate(BaseModel):
    """Request schema for creating a new project.

    Attributes:
        name: Project name, unique among non-archived projects
        description: Optional description
        status: Initial status (active, archived, draft)
        owner_id: Optional owning user
    """

    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    status: str = "active"
    owner_id: int | None = None


class ProjectUpdate(BaseModel):
    """Request schema for updating a project.

    All fields are optional. Only provided fields will be updated.
    """

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    status: str | None = None
    owner_id: int | None = None


class ProjectResponse(BaseModel):
    """Response schema for project data."""

    id: int
    name: str
    description: str | None
    status: ProjectStatus
    owner_id: int | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


def create_projects_router() -> APIRouter:
    """Create projects router with CRUD endpoints.

    Returns:
        Configured APIRouter with project endpoints.

    Routes:
        GET /api/projects - List projects with optional status filter
        POST /api/projects - Create a project
        GET /api/projects/{project} - Get a project by id or name
        PUT /api/projects/{project} - Update a project
        DELETE /api/projects/{project} - Delete a project and everything in it
        GET /api/projects/{project}/users - Members and assignees
        GET /api/projects/{project}/graph - Dependency graph
    """
    router = APIRouter(prefix="/api/projects", tags=["projects"])

    @router.get(
        "",
        response_model=list[ProjectResponse],
        dependencies=[Depends(require_scopes("read"))],
    )
    async def list_projects(
        status: str | None = None,
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> list[ProjectResponse]:
        """List all projects with an optional status filter."""
        status_enum = project_queries.parse_project_status(status) if status else None
        async with session_factory() as session:
            projects = await project_queries.list_projects(session, status=status_enum)

        logger.info("projects_listed", count=len(projects), status_filter=status)
        return [ProjectResponse.model_validate(p) for p in projects]

    @router.post("", response_model=ProjectResponse, status_code=http_status.HTTP_201_CREATED)
    async def create_project(
        project_data: ProjectCreate,
        request: Request,
        auth: AuthContext = Depends(require_scopes("write")),  # noqa: B008
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> ProjectResponse:
        """Create a new project."""
        async with session_factory() as session:
            project = await project_queries.create_project(
                session,
                name=project_data.name,
                description=project_data.description,
                status=project_data.status,
                owner_id=project_data.owner_id if project_data.owner_id is not None else auth.user_id,
            )

        queue_embeddings(request, (EntityKind.project, project.id))
        logger.info("project_created_via_api", project_id=project.id)
        return ProjectResponse.model_validate(project)

    @router.get(
        "/{project}",
        response_model=ProjectResponse,
        dependencies=[Depends(require_scopes("read"))],
    )
    async def get_project(
        project: str,
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> ProjectResponse:
        """Get a project by id or name."""
        async with session_factory() as session:
            found = await project_queries.resolve_project(session, project)
        return ProjectResponse.model_validate(found)

    @router.put("/{project}", response_model=ProjectResponse)
    async def update_project(
        project: str,
        project_data: ProjectUpdate,
        request: Request,
        auth: AuthContext = Depends(require_scopes("write")),  # noqa: B008
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> ProjectResponse:
        """Update the provided fields of a project."""
        changes: dict[str, Any] = project_data.model_dump(exclude_unset=True)
        async with session_factory() as session:
            found = await project_queries.resolve_project(session, project)
            updated = await project_queries.update_project(session, found.id, changes)

        queue_embeddings(request, (EntityKind.project, updated.id))
        logger.info("project_updated_via_api", project_id=updated.id, fields=sorted(changes))
        return ProjectResponse.model_validate(updated)

    @router.delete("/{project}", status_code=http_status.HTTP_204_NO_CONTENT)
    async def delete_project(
        project: str,
        auth: AuthContext = Depends(require_scopes("write")),  # noqa: B008
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
        storage: AttachmentStorage = Depends(get_storage),  # noqa: B008
    ) -> None:
        """Delete a project with all of its epics, tasks and labels."""
        async with session_factory() as session:
            found = await project_queries.resolve_project(session, project)
            outcome = await project_queries.delete_project(session, found.id)

        storage.delete_many(outcome.attachment_paths)
        logger.info(
            "project_deleted_via_api",
            project_id=found.id,
            deleted_tasks=len(outcome.task_ids),
        )

    @router.get(
        "/{project}/users",
        response_model=list[UserResponse],
        dependencies=[Depends(require_scopes("read"))],
    )
    async def list_project_users(
        project: str,
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> list[UserResponse]:
        """Users that are members of the project or assigned to its tasks."""
        async with session_factory() as session:
            found = await project_queries.resolve_project(session, project)
            users = await project_queries.list_project_users(session, found.id)
        return [UserResponse.model_validate(u) for u in users]

    @router.get("/{project}/graph", dependencies=[Depends(require_scopes("read"))])
    async def project_graph(
        project: str,
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
        engine: DependencyEngine = Depends(get_dependency_engine),  # noqa: B008
    ) -> dict[str, Any]:
        """Tasks of the project as nodes and their dependencies as edges."""
        async with session_factory() as session:
            found = await project_queries.resolve_project(session, project)
        graph = await engine.project_graph(found.id)
        graph["project_id"] = found.id
        return graph

    return router
