"""Task endpoints for Headless PM.

Provides the project-scoped task routes, the legacy flat ``/api/tasks``
routes kept for backward compatibility, the dependency routes, and the
board views. Every task response carries ``can_start``, its label names
and the ids of its immediate predecessors.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi import status as http_status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from headless_pm.database.models.activity import Activity
from headless_pm.database.models.embedding import EntityKind
from headless_pm.database.models.task import Task, TaskPriority, TaskStatus
from headless_pm.database.queries import project as project_queries
from headless_pm.database.queries import task as task_queries
from headless_pm.database.queries.activity import list_task_activity
from headless_pm.database.queries.dependency import dependency_ids_for_tasks
from headless_pm.database.queries.label import label_names_for_tasks
from headless_pm.errors import InvalidInputError, NotFoundError
from headless_pm.graph.board import BOARD_COLUMNS, order_board
from headless_pm.graph.dependencies import (
    DependencyEngine,
    LinkedTask,
    can_start_map,
    summarize_project,
)
from headless_pm.logging import get_logger
from headless_pm.storage import AttachmentStorage
from headless_pm.web.auth import AuthContext, require_scopes
from headless_pm.web.dependencies import (
    get_dependency_engine,
    get_max_depth,
    get_session_factory,
    get_storage,
    queue_embeddings,
)

logger = get_logger(__name__)


# --- Pydantic Schemas ---


class TaskCreate(BaseModel):
    """Request schema for creating a new task.

    ``project_id`` is required on the legacy ``POST /api/tasks`` route and
    ignored on the project-scoped route.
    """

    project_id: int | None = None
    title: str = Field(..., min_length=1)
    description: str | None = None
    status: str = "todo"
    priority: str = "medium"
    parent_id: int | None = None
    epic_id: int | None = None
    assignee_id: int | None = None
    assignee: str | None = None
    estimated_hours: float | None = Field(default=None, ge=0)
    actual_hours: float | None = Field(default=None, ge=0)
    story_points: int | None = Field(default=None, ge=0)
    due_date: datetime | None = None
    start_date: datetime | None = None


class TaskUpdate(BaseModel):
    """Request schema for updating a task; only provided fields change."""

    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    status: str | None = None
    priority: str | None = None
    parent_id: int | None = None
    epic_id: int | None = None
    assignee_id: int | None = None
    assignee: str | None = None
    estimated_hours: float | None = Field(default=None, ge=0)
    actual_hours: float | None = Field(default=None, ge=0)
    story_points: int | None = Field(default=None, ge=0)
    due_date: datetime | None = None
    start_date: datetime | None = None


class TaskResponse(BaseModel):
    """Response schema for task data."""

    id: int
    project_id: int
    parent_id: int | None
    epic_id: int | None
    title: str
    description: str | None
    status: TaskStatus
    priority: TaskPriority
    assignee: str | None
    assignee_id: int | None
    estimated_hours: float | None
    actual_hours: float | None
    story_points: int | None
    due_date: datetime | None
    start_date: datetime | None
    completed_at: datetime | None
    created_by: int
    updated_by: int | None
    created_at: datetime
    updated_at: datetime
    can_start: bool = True
    labels: list[str] = Field(default_factory=list)
    dependencies: list[int] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class DependencyCreate(BaseModel):
    """Request schema for adding a dependency."""

    depends_on_id: int
    type: str | None = None


class DependencyResponse(BaseModel):
    """Response schema for a dependency row."""

    id: int
    task_id: int
    depends_on_id: int
    type: str
    created_at: datetime

    model_config = {"from_attributes": True}


class ActivityResponse(BaseModel):
    """Response schema for an activity log entry."""

    id: int
    task_id: int
    project_id: int
    user_id: int
    user_name: str
    action: str
    field_name: str | None
    old_value: str | None
    new_value: str | None
    description: str
    created_at: datetime

    model_config = {"from_attributes": True}


async def render_tasks(session: AsyncSession, tasks: Sequence[Task]) -> list[TaskResponse]:
    """Build task responses with readiness, labels and predecessor ids."""
    ids = [t.id for t in tasks]
    ready = await can_start_map(session, ids)
    labels = await label_names_for_tasks(session, ids)
    predecessors = await dependency_ids_for_tasks(session, ids)
    return [
        TaskResponse.model_validate(task).model_copy(
            update={
                "can_start": ready.get(task.id, True),
                "labels": labels.get(task.id, []),
                "dependencies": predecessors.get(task.id, []),
            }
        )
        for task in tasks
    ]


async def render_task(session: AsyncSession, task: Task) -> TaskResponse:
    return (await render_tasks(session, [task]))[0]


def _filters(
    status: str | None,
    priority: str | None,
) -> tuple[TaskStatus | None, TaskPriority | None]:
    return (
        task_queries.parse_task_status(status) if status else None,
        task_queries.parse_priority(priority) if priority else None,
    )


def create_tasks_router() -> APIRouter:
    """Create the task router.

    Routes (project-scoped):
        GET|POST /api/projects/{project}/tasks
        GET|PUT|DELETE /api/projects/{project}/tasks/{task_id}
        GET /api/projects/{project}/board
        GET /api/projects/{project}/board/archived

    Routes (legacy flat):
        GET|POST /api/tasks
        GET|PUT|DELETE /api/tasks/{task_id}
        GET /api/tasks/{task_id}/subtasks
        GET /api/tasks/{task_id}/activity

    Routes (dependencies):
        GET|POST /api/tasks/{task_id}/dependencies
        DELETE /api/tasks/{task_id}/dependencies/{dependency_id}
        GET /api/tasks/{task_id}/dependents
        GET /api/tasks/{task_id}/dependency-chain
        GET /api/tasks/{task_id}/dependent-chain
        GET /api/tasks/{task_id}/can-start
    """
    router = APIRouter(tags=["tasks"])
    read = [Depends(require_scopes("read"))]

    async def _create(
        request: Request,
        session_factory: Callable[[], AsyncSession],
        project_id: int,
        task_data: TaskCreate,
        auth: AuthContext,
    ) -> TaskResponse:
        async with session_factory() as session:
            task = await task_queries.create_task(
                session,
                project_id=project_id,
                title=task_data.title,
                description=task_data.description,
                status=task_data.status,
                priority=task_data.priority,
                parent_id=task_data.parent_id,
                epic_id=task_data.epic_id,
                assignee_id=task_data.assignee_id,
                assignee=task_data.assignee,
                estimated_hours=task_data.estimated_hours,
                actual_hours=task_data.actual_hours,
                story_points=task_data.story_points,
                due_date=task_data.due_date,
                start_date=task_data.start_date,
                actor=auth.actor,
                max_depth=get_max_depth(request),
            )
            response = await render_task(session, task)

        queue_embeddings(request, (EntityKind.task, task.id), (EntityKind.project, task.project_id))
        logger.info("task_created_via_api", task_id=task.id, project_id=project_id)
        return response

    async def _update(
        request: Request,
        session_factory: Callable[[], AsyncSession],
        task_id: int,
        task_data: TaskUpdate,
        auth: AuthContext,
        project_id: int | None = None,
    ) -> TaskResponse:
        changes: dict[str, Any] = task_data.model_dump(exclude_unset=True)
        async with session_factory() as session:
            if project_id is not None:
                await _task_in_project(session, project_id, task_id)
            task = await task_queries.update_task(
                session,
                task_id,
                changes,
                actor=auth.actor,
                max_depth=get_max_depth(request),
            )
            response = await render_task(session, task)

        queue_embeddings(request, (EntityKind.task, task.id), (EntityKind.project, task.project_id))
        logger.info("task_updated_via_api", task_id=task_id, fields=sorted(changes))
        return response

    async def _delete(
        request: Request,
        session_factory: Callable[[], AsyncSession],
        storage: AttachmentStorage,
        task_id: int,
        project_id: int | None = None,
    ) -> None:
        async with session_factory() as session:
            task = await _task_in_project(session, project_id, task_id)
            outcome = await task_queries.delete_task(session, task_id, max_depth=get_max_depth(request))

        storage.delete_many(outcome.attachment_paths)
        queue_embeddings(request, (EntityKind.project, task.project_id))
        logger.info("task_deleted_via_api", task_id=task_id, deleted_tasks=len(outcome.task_ids))

    async def _task_in_project(session: AsyncSession, project_id: int | None, task_id: int) -> Task:
        task = await task_queries.require_task(session, task_id)
        if project_id is not None and task.project_id != project_id:
            raise NotFoundError("Task not found", field="task_id")
        return task

    # --- Project-scoped routes ---

    @router.get("/api/projects/{project}/tasks", response_model=list[TaskResponse], dependencies=read)
    async def list_project_tasks(
        project: str,
        status: str | None = None,
        priority: str | None = None,
        assignee_id: int | None = None,
        epic_id: int | None = None,
        parent_id: int | None = None,
        search: str | None = None,
        limit: int | None = None,
        offset: int = 0,
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> list[TaskResponse]:
        """List the tasks of one project with optional filters."""
        status_enum, priority_enum = _filters(status, priority)
        async with session_factory() as session:
            found = await project_queries.resolve_project(session, project)
            tasks = await task_queries.list_tasks(
                session,
                project_id=found.id,
                status=status_enum,
                priority=priority_enum,
                assignee_id=assignee_id,
                epic_id=epic_id,
                parent_id=parent_id,
                search=search,
                limit=limit,
                offset=offset,
            )
            return await render_tasks(session, tasks)

    @router.post(
        "/api/projects/{project}/tasks",
        response_model=TaskResponse,
        status_code=http_status.HTTP_201_CREATED,
    )
    async def create_project_task(
        project: str,
        task_data: TaskCreate,
        request: Request,
        auth: AuthContext = Depends(require_scopes("write")),  # noqa: B008
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> TaskResponse:
        """Create a task in the project named by the path."""
        async with session_factory() as session:
            found = await project_queries.resolve_project(session, project)
        return await _create(request, session_factory, found.id, task_data, auth)

    @router.get(
        "/api/projects/{project}/tasks/{task_id}",
        response_model=TaskResponse,
        dependencies=read,
    )
    async def get_project_task(
        project: str,
        task_id: int,
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> TaskResponse:
        async with session_factory() as session:
            found = await project_queries.resolve_project(session, project)
            task = await _task_in_project(session, found.id, task_id)
            return await render_task(session, task)

    @router.put("/api/projects/{project}/tasks/{task_id}", response_model=TaskResponse)
    async def update_project_task(
        project: str,
        task_id: int,
        task_data: TaskUpdate,
        request: Request,
        auth: AuthContext = Depends(require_scopes("write")),  # noqa: B008
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> TaskResponse:
        async with session_factory() as session:
            found = await project_queries.resolve_project(session, project)
        return await _update(request, session_factory, task_id, task_data, auth, project_id=found.id)

    @router.delete("/api/projects/{project}/tasks/{task_id}", status_code=http_status.HTTP_204_NO_CONTENT)
    async def delete_project_task(
        project: str,
        task_id: int,
        request: Request,
        auth: AuthContext = Depends(require_scopes("write")),  # noqa: B008
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
        storage: AttachmentStorage = Depends(get_storage),  # noqa: B008
    ) -> None:
        async with session_factory() as session:
            found = await project_queries.resolve_project(session, project)
        await _delete(request, session_factory, storage, task_id, project_id=found.id)

    @router.get("/api/projects/{project}/board", dependencies=read)
    async def project_board(
        project: str,
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> dict[str, Any]:
        """Tasks grouped by status in board order, without archived tasks."""
        async with session_factory() as session:
            found = await project_queries.resolve_project(session, project)
            tasks = await task_queries.list_tasks(session, project_id=found.id)
            summary = await summarize_project(session, found.id)
            columns = order_board(tasks, summary)
            visible = [t for status in BOARD_COLUMNS for t in columns[status.value]]
            rendered = {t.id: t for t in await render_tasks(session, visible)}

        return {
            "project_id": found.id,
            "columns": {
                status: [rendered[t.id] for t in column] for status, column in columns.items()
            },
            "archived_count": len(tasks) - len(visible),
        }

    @router.get(
        "/api/projects/{project}/board/archived",
        response_model=list[TaskResponse],
        dependencies=read,
    )
    async def project_board_archived(
        project: str,
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> list[TaskResponse]:
        """Done tasks hidden from the board, most recently completed first."""
        async with session_factory() as session:
            found = await project_queries.resolve_project(session, project)
            tasks = await task_queries.list_archived_tasks(session, found.id)
            return await render_tasks(session, tasks)

    # --- Legacy flat routes ---

    @router.get("/api/tasks", response_model=list[TaskResponse], dependencies=read)
    async def list_tasks(
        project_id: int | None = None,
        status: str | None = None,
        priority: str | None = None,
        assignee_id: int | None = None,
        epic_id: int | None = None,
        parent_id: int | None = None,
        search: str | None = None,
        limit: int | None = None,
        offset: int = 0,
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> list[TaskResponse]:
        """List tasks across projects with optional filters."""
        status_enum, priority_enum = _filters(status, priority)
        async with session_factory() as session:
            tasks = await task_queries.list_tasks(
                session,
                project_id=project_id,
                status=status_enum,
                priority=priority_enum,
                assignee_id=assignee_id,
                epic_id=epic_id,
                parent_id=parent_id,
                search=search,
                limit=limit,
                offset=offset,
            )
            return await render_tasks(session, tasks)

    @router.post("/api/tasks", response_model=TaskResponse, status_code=http_status.HTTP_201_CREATED)
    async def create_task(
        task_data: TaskCreate,
        request: Request,
        auth: AuthContext = Depends(require_scopes("write")),  # noqa: B008
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> TaskResponse:
        """Create a task; the body must name its project."""
        if task_data.project_id is None:
            raise InvalidInputError("project_id is required", field="project_id")
        return await _create(request, session_factory, task_data.project_id, task_data, auth)

    @router.get("/api/tasks/{task_id}", response_model=TaskResponse, dependencies=read)
    async def get_task(
        task_id: int,
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> TaskResponse:
        async with session_factory() as session:
            task = await task_queries.require_task(session, task_id)
            return await render_task(session, task)

    @router.put("/api/tasks/{task_id}", response_model=TaskResponse)
    async def update_task(
        task_id: int,
        task_data: TaskUpdate,
        request: Request,
        auth: AuthContext = Depends(require_scopes("write")),  # noqa: B008
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> TaskResponse:
        return await _update(request, session_factory, task_id, task_data, auth)

    @router.delete("/api/tasks/{task_id}", status_code=http_status.HTTP_204_NO_CONTENT)
    async def delete_task(
        task_id: int,
        request: Request,
        auth: AuthContext = Depends(require_scopes("write")),  # noqa: B008
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
        storage: AttachmentStorage = Depends(get_storage),  # noqa: B008
    ) -> None:
        await _delete(request, session_factory, storage, task_id)

    @router.get("/api/tasks/{task_id}/subtasks", response_model=list[TaskResponse], dependencies=read)
    async def list_subtasks(
        task_id: int,
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> list[TaskResponse]:
        async with session_factory() as session:
            await task_queries.require_task(session, task_id)
            subtasks = await task_queries.list_subtasks(session, task_id)
            return await render_tasks(session, subtasks)

    @router.get(
        "/api/tasks/{task_id}/activity",
        response_model=list[ActivityResponse],
        dependencies=read,
    )
    async def task_activity(
        task_id: int,
        limit: int = 100,
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> list[Activity]:
        async with session_factory() as session:
            await task_queries.require_task(session, task_id)
            return await list_task_activity(session, task_id, limit=limit)

    # --- Dependencies ---

    @router.get(
        "/api/tasks/{task_id}/dependencies",
        response_model=list[LinkedTask],
        dependencies=read,
    )
    async def list_dependencies(
        task_id: int,
        engine: DependencyEngine = Depends(get_dependency_engine),  # noqa: B008
    ) -> list[LinkedTask]:
        """Immediate predecessors of a task."""
        return await engine.list_dependencies(task_id)

    @router.post(
        "/api/tasks/{task_id}/dependencies",
        response_model=DependencyResponse,
        status_code=http_status.HTTP_201_CREATED,
    )
    async def add_dependency(
        task_id: int,
        dependency_data: DependencyCreate,
        auth: AuthContext = Depends(require_scopes("write")),  # noqa: B008
        engine: DependencyEngine = Depends(get_dependency_engine),  # noqa: B008
    ) -> DependencyResponse:
        """Make a task depend on another task of the same project."""
        dependency = await engine.add_dependency(
            task_id,
            dependency_data.depends_on_id,
            kind=dependency_data.type,
            actor=auth.actor,
        )
        return DependencyResponse.model_validate(dependency)

    @router.delete(
        "/api/tasks/{task_id}/dependencies/{dependency_id}",
        status_code=http_status.HTTP_204_NO_CONTENT,
    )
    async def remove_dependency(
        task_id: int,
        dependency_id: int,
        auth: AuthContext = Depends(require_scopes("write")),  # noqa: B008
        engine: DependencyEngine = Depends(get_dependency_engine),  # noqa: B008
    ) -> None:
        """Remove a dependency; removing a missing one is not an error."""
        await engine.remove_dependency(task_id, dependency_id, actor=auth.actor)

    @router.get(
        "/api/tasks/{task_id}/dependents",
        response_model=list[LinkedTask],
        dependencies=read,
    )
    async def list_dependents(
        task_id: int,
        engine: DependencyEngine = Depends(get_dependency_engine),  # noqa: B008
    ) -> list[LinkedTask]:
        """Immediate successors of a task."""
        return await engine.list_dependents(task_id)

    @router.get(
        "/api/tasks/{task_id}/dependency-chain",
        response_model=list[TaskResponse],
        dependencies=read,
    )
    async def dependency_chain(
        task_id: int,
        engine: DependencyEngine = Depends(get_dependency_engine),  # noqa: B008
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> list[TaskResponse]:
        """Every task transitively required by this task, by ascending id."""
        chain = await engine.dependency_chain(task_id)
        async with session_factory() as session:
            return await render_tasks(session, chain)

    @router.get(
        "/api/tasks/{task_id}/dependent-chain",
        response_model=list[TaskResponse],
        dependencies=read,
    )
    async def dependent_chain(
        task_id: int,
        engine: DependencyEngine = Depends(get_dependency_engine),  # noqa: B008
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> list[TaskResponse]:
        """Every task that transitively requires this task, by ascending id."""
        chain = await engine.dependent_chain(task_id)
        async with session_factory() as session:
            return await render_tasks(session, chain)

    @router.get("/api/tasks/{task_id}/can-start", dependencies=read)
    async def can_start(
        task_id: int,
        engine: DependencyEngine = Depends(get_dependency_engine),  # noqa: B008
    ) -> dict[str, Any]:
        """Whether every immediate predecessor of the task is ready."""
        return {"task_id": task_id, "can_start": await engine.can_start(task_id)}

    return router
