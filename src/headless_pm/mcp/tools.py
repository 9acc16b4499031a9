"""MCP tool catalog for Headless PM.

Each tool pairs a pydantic argument model, whose JSON schema is advertised
as the tool's ``inputSchema``, with an async handler that calls the same
query functions and services as the REST routes.

Example usage:
    >>> context = ToolContext(session_factory, engine, storage, index)
    >>> await call_tool(context, "create_project", {"name": "Alpha"})
    {'id': 1, 'name': 'Alpha', ...}
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from headless_pm.database.models.embedding import EntityKind
from headless_pm.database.queries import comment as comment_queries
from headless_pm.database.queries import epic as epic_queries
from headless_pm.database.queries import label as label_queries
from headless_pm.database.queries import project as project_queries
from headless_pm.database.queries import task as task_queries
from headless_pm.database.queries.activity import SYSTEM_ACTOR, Actor
from headless_pm.errors import ForbiddenError, NotFoundError
from headless_pm.graph.dependencies import DependencyEngine
from headless_pm.intelligence.embedding_worker import EmbeddingWorker
from headless_pm.intelligence.embeddings import EmbeddingService
from headless_pm.intelligence.index import EmbeddingIndex
from headless_pm.logging import get_logger
from headless_pm.mcp.protocol import INVALID_PARAMS, JSONRPCError
from headless_pm.storage import AttachmentStorage
from headless_pm.web.auth import AuthContext
from headless_pm.web.routes.comments import CommentResponse
from headless_pm.web.routes.epics import EpicResponse
from headless_pm.web.routes.labels import LabelResponse
from headless_pm.web.routes.projects import ProjectResponse
from headless_pm.web.routes.search import semantic_search
from headless_pm.web.routes.tasks import DependencyResponse, render_task, render_tasks
from headless_pm.web.routes.users import UserResponse

logger = get_logger(__name__)


@dataclass
class ToolContext:
    """Services and caller identity available to tool handlers."""

    session_factory: Callable[[], AsyncSession]
    engine: DependencyEngine
    storage: AttachmentStorage
    embedding_index: EmbeddingIndex
    embedding_service: EmbeddingService | None = None
    embedding_worker: EmbeddingWorker | None = None
    max_depth: int = 64
    auth: AuthContext | None = None

    @property
    def actor(self) -> Actor:
        return self.auth.actor if self.auth is not None else SYSTEM_ACTOR

    def for_caller(self, auth: AuthContext) -> ToolContext:
        return replace(self, auth=auth)

    def queue(self, *jobs: tuple[EntityKind, int | None]) -> None:
        if self.embedding_worker is None:
            return
        for kind, entity_id in jobs:
            if entity_id is not None:
                self.embedding_worker.queue_job(kind, entity_id)


ToolHandler = Callable[[ToolContext, Any], Awaitable[Any]]


@dataclass(frozen=True)
class Tool:
    """One entry of the tool catalog."""

    name: str
    description: str
    arguments: type[BaseModel]
    handler: ToolHandler
    mutating: bool = False

    def descriptor(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.arguments.model_json_schema(),
        }


TOOLS: dict[str, Tool] = {}


def tool(
    name: str,
    description: str,
    arguments: type[BaseModel],
    mutating: bool = False,
) -> Callable[[ToolHandler], ToolHandler]:
    """Register a handler in the tool catalog."""

    def register(handler: ToolHandler) -> ToolHandler:
        TOOLS[name] = Tool(name, description, arguments, handler, mutating)
        return handler

    return register


def list_tools() -> list[dict[str, Any]]:
    """Descriptors of every tool, in registration order."""
    return [t.descriptor() for t in TOOLS.values()]


async def call_tool(context: ToolContext, name: str, arguments: dict[str, Any] | None) -> Any:
    """Validate arguments and run one tool.

    Args:
        context: Services and caller.
        name: Tool name.
        arguments: Raw JSON arguments.

    Returns:
        JSON-compatible result.

    Raises:
        JSONRPCError: For unknown tools or invalid arguments (-32602).
        HeadlessPMError: Domain failures raised by the handler.
    """
    entry = TOOLS.get(name)
    if entry is None:
        raise JSONRPCError(INVALID_PARAMS, f"Unknown tool: {name}")
    if arguments is not None and not isinstance(arguments, dict):
        raise JSONRPCError(INVALID_PARAMS, "Tool arguments must be an object")

    try:
        args = entry.arguments.model_validate(arguments or {})
    except ValidationError as e:
        raise JSONRPCError(
            INVALID_PARAMS,
            f"Invalid arguments for {name}",
            data=jsonable_encoder(e.errors(include_url=False, include_context=False)),
        ) from None

    required = "write" if entry.mutating else "read"
    if context.auth is not None and not context.auth.has_scope(required):
        raise ForbiddenError("Insufficient permissions", required_scope=required)

    logger.info("mcp_tool_called", tool=name, mutating=entry.mutating)
    return jsonable_encoder(await entry.handler(context, args))


class _Arguments(BaseModel):
    model_config = ConfigDict(extra="forbid")


# --- Projects ---


class CreateProjectArgs(_Arguments):
    name: str = Field(..., min_length=1, description="Project name")
    description: str | None = None
    status: str = Field(default="active", description="active, draft or archived")
    owner_id: int | None = None


class ProjectIdArgs(_Arguments):
    project_id: int


class ListProjectsArgs(_Arguments):
    status: str | None = None


class UpdateProjectArgs(_Arguments):
    project_id: int
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    status: str | None = None
    owner_id: int | None = None


@tool("create_project", "Create a new project", CreateProjectArgs, mutating=True)
async def create_project(context: ToolContext, args: CreateProjectArgs) -> ProjectResponse:
    async with context.session_factory() as session:
        project = await project_queries.create_project(
            session,
            name=args.name,
            description=args.description,
            status=args.status,
            owner_id=args.owner_id if args.owner_id is not None else context.actor.user_id or None,
        )
    context.queue((EntityKind.project, project.id))
    return ProjectResponse.model_validate(project)


@tool("list_projects", "List projects, optionally filtered by status", ListProjectsArgs)
async def list_projects(context: ToolContext, args: ListProjectsArgs) -> list[ProjectResponse]:
    status = project_queries.parse_project_status(args.status) if args.status else None
    async with context.session_factory() as session:
        projects = await project_queries.list_projects(session, status=status)
    return [ProjectResponse.model_validate(p) for p in projects]


@tool("get_project", "Get a project by id", ProjectIdArgs)
async def get_project(context: ToolContext, args: ProjectIdArgs) -> ProjectResponse:
    async with context.session_factory() as session:
        project = await project_queries.get_project(session, args.project_id)
    if project is None:
        raise NotFoundError("Project not found", field="project_id")
    return ProjectResponse.model_validate(project)


@tool("update_project", "Update fields of a project", UpdateProjectArgs, mutating=True)
async def update_project(context: ToolContext, args: UpdateProjectArgs) -> ProjectResponse:
    changes = args.model_dump(exclude_unset=True, exclude={"project_id"})
    async with context.session_factory() as session:
        project = await project_queries.update_project(session, args.project_id, changes)
    context.queue((EntityKind.project, project.id))
    return ProjectResponse.model_validate(project)


@tool("delete_project", "Delete a project with all of its tasks, epics and labels", ProjectIdArgs, mutating=True)
async def delete_project(context: ToolContext, args: ProjectIdArgs) -> dict[str, Any]:
    async with context.session_factory() as session:
        outcome = await project_queries.delete_project(session, args.project_id)
    context.storage.delete_many(outcome.attachment_paths)
    return {"deleted": True, "project_id": args.project_id, "deleted_tasks": outcome.task_ids}


# --- Tasks ---


class CreateTaskArgs(_Arguments):
    project_id: int
    title: str = Field(..., min_length=1)
    description: str | None = None
    status: str = Field(default="todo", description="todo, in_progress, review, done or cancelled")
    priority: str = Field(default="medium", description="low, medium, high or urgent")
    parent_id: int | None = None
    epic_id: int | None = None
    assignee_id: int | None = None
    assignee: str | None = None
    estimated_hours: float | None = Field(default=None, ge=0)
    story_points: int | None = Field(default=None, ge=0)
    due_date: datetime | None = None
    start_date: datetime | None = None


class ListTasksArgs(_Arguments):
    project_id: int | None = None
    status: str | None = None
    priority: str | None = None
    assignee_id: int | None = None
    epic_id: int | None = None
    search: str | None = None
    limit: int = Field(default=50, ge=1, le=500)


class TaskIdArgs(_Arguments):
    task_id: int


class UpdateTaskArgs(_Arguments):
    task_id: int
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


class AssignTaskArgs(_Arguments):
    task_id: int
    assignee_id: int | None = Field(..., description="User id, or null to unassign")


@tool("create_task", "Create a task in a project", CreateTaskArgs, mutating=True)
async def create_task(context: ToolContext, args: CreateTaskArgs) -> Any:
    fields = args.model_dump(exclude={"project_id", "title"})
    async with context.session_factory() as session:
        task = await task_queries.create_task(
            session,
            project_id=args.project_id,
            title=args.title,
            actor=context.actor,
            max_depth=context.max_depth,
            **fields,
        )
        rendered = await render_task(session, task)
    context.queue((EntityKind.task, task.id), (EntityKind.project, task.project_id))
    return rendered


@tool("list_tasks", "List tasks with optional filters", ListTasksArgs)
async def list_tasks(context: ToolContext, args: ListTasksArgs) -> Any:
    status = task_queries.parse_task_status(args.status) if args.status else None
    priority = task_queries.parse_priority(args.priority) if args.priority else None
    async with context.session_factory() as session:
        tasks = await task_queries.list_tasks(
            session,
            project_id=args.project_id,
            status=status,
            priority=priority,
            assignee_id=args.assignee_id,
            epic_id=args.epic_id,
            search=args.search,
            limit=args.limit,
        )
        return await render_tasks(session, tasks)


@tool("get_task", "Get a task by id", TaskIdArgs)
async def get_task(context: ToolContext, args: TaskIdArgs) -> Any:
    async with context.session_factory() as session:
        task = await task_queries.require_task(session, args.task_id)
        return await render_task(session, task)


@tool("update_task", "Update fields of a task", UpdateTaskArgs, mutating=True)
async def update_task(context: ToolContext, args: UpdateTaskArgs) -> Any:
    changes = args.model_dump(exclude_unset=True, exclude={"task_id"})
    async with context.session_factory() as session:
        task = await task_queries.update_task(
            session, args.task_id, changes, actor=context.actor, max_depth=context.max_depth
        )
        rendered = await render_task(session, task)
    context.queue((EntityKind.task, task.id), (EntityKind.project, task.project_id))
    return rendered


@tool("delete_task", "Delete a task and all of its subtasks", TaskIdArgs, mutating=True)
async def delete_task(context: ToolContext, args: TaskIdArgs) -> dict[str, Any]:
    async with context.session_factory() as session:
        task = await task_queries.require_task(session, args.task_id)
        outcome = await task_queries.delete_task(session, args.task_id, max_depth=context.max_depth)
    context.storage.delete_many(outcome.attachment_paths)
    context.queue((EntityKind.project, task.project_id))
    return {"deleted": True, "task_ids": outcome.task_ids}


@tool("assign_task", "Assign a task to a user or unassign it", AssignTaskArgs, mutating=True)
async def assign_task(context: ToolContext, args: AssignTaskArgs) -> Any:
    async with context.session_factory() as session:
        task = await task_queries.assign_task(session, args.task_id, args.assignee_id, actor=context.actor)
        rendered = await render_task(session, task)
    context.queue((EntityKind.task, task.id), (EntityKind.project, task.project_id))
    return rendered


@tool("list_assignees", "List users assigned to tasks of a project", ProjectIdArgs)
async def list_assignees(context: ToolContext, args: ProjectIdArgs) -> list[UserResponse]:
    async with context.session_factory() as session:
        if await project_queries.get_project(session, args.project_id) is None:
            raise NotFoundError("Project not found", field="project_id")
        users = await project_queries.list_project_assignees(session, args.project_id)
    return [UserResponse.model_validate(u) for u in users]


# --- Epics ---


class CreateEpicArgs(_Arguments):
    project_id: int
    name: str = Field(..., min_length=1)
    description: str | None = None
    status: str = Field(default="planned", description="planned, active, completed or cancelled")
    start_date: datetime | None = None
    end_date: datetime | None = None


class ListEpicsArgs(_Arguments):
    project_id: int | None = None
    status: str | None = None


class EpicIdArgs(_Arguments):
    epic_id: int


class UpdateEpicArgs(_Arguments):
    epic_id: int
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    status: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None


class DeleteEpicArgs(_Arguments):
    epic_id: int
    cascade: bool = Field(default=False, description="Also delete the epic's tasks")


@tool("create_epic", "Create an epic in a project", CreateEpicArgs, mutating=True)
async def create_epic(context: ToolContext, args: CreateEpicArgs) -> EpicResponse:
    async with context.session_factory() as session:
        epic = await epic_queries.create_epic(session, **args.model_dump())
    return EpicResponse.model_validate(epic)


@tool("list_epics", "List epics, optionally of one project", ListEpicsArgs)
async def list_epics(context: ToolContext, args: ListEpicsArgs) -> list[EpicResponse]:
    status = epic_queries.parse_epic_status(args.status) if args.status else None
    async with context.session_factory() as session:
        epics = await epic_queries.list_epics(session, project_id=args.project_id, status=status)
    return [EpicResponse.model_validate(e) for e in epics]


@tool("get_epic", "Get an epic by id", EpicIdArgs)
async def get_epic(context: ToolContext, args: EpicIdArgs) -> EpicResponse:
    async with context.session_factory() as session:
        epic = await epic_queries.get_epic(session, args.epic_id)
    if epic is None:
        raise NotFoundError("Epic not found", field="epic_id")
    return EpicResponse.model_validate(epic)


@tool("update_epic", "Update fields of an epic", UpdateEpicArgs, mutating=True)
async def update_epic(context: ToolContext, args: UpdateEpicArgs) -> EpicResponse:
    changes = args.model_dump(exclude_unset=True, exclude={"epic_id"})
    async with context.session_factory() as session:
        epic = await epic_queries.update_epic(session, args.epic_id, changes)
    return EpicResponse.model_validate(epic)


@tool("delete_epic", "Delete an epic, detaching or deleting its tasks", DeleteEpicArgs, mutating=True)
async def delete_epic(context: ToolContext, args: DeleteEpicArgs) -> dict[str, Any]:
    async with context.session_factory() as session:
        outcome = await epic_queries.delete_epic(
            session, args.epic_id, cascade_tasks=args.cascade, max_depth=context.max_depth
        )
    context.storage.delete_many(outcome.attachment_paths)
    return {"deleted": True, "epic_id": args.epic_id, "deleted_tasks": outcome.task_ids}


# --- Labels ---


class CreateLabelArgs(_Arguments):
    project_id: int
    name: str = Field(..., min_length=1)
    color: str | None = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")


class ListLabelsArgs(_Arguments):
    project_id: int | None = None


class AssignLabelsArgs(_Arguments):
    task_id: int
    labels: list[str] = Field(..., description="Label names; replaces the task's labels")


@tool("create_label", "Create a label in a project", CreateLabelArgs, mutating=True)
async def create_label(context: ToolContext, args: CreateLabelArgs) -> LabelResponse:
    async with context.session_factory() as session:
        label = await label_queries.create_label(session, args.project_id, args.name, color=args.color)
    return LabelResponse.model_validate(label)


@tool("list_labels", "List labels, optionally of one project", ListLabelsArgs)
async def list_labels(context: ToolContext, args: ListLabelsArgs) -> list[LabelResponse]:
    async with context.session_factory() as session:
        labels = await label_queries.list_labels(session, project_id=args.project_id)
    return [LabelResponse.model_validate(label) for label in labels]


@tool("assign_labels", "Replace the labels of a task", AssignLabelsArgs, mutating=True)
async def assign_labels(context: ToolContext, args: AssignLabelsArgs) -> list[LabelResponse]:
    async with context.session_factory() as session:
        labels = await label_queries.assign_labels_to_task(
            session, args.task_id, args.labels, actor=context.actor
        )
    return [LabelResponse.model_validate(label) for label in labels]


# --- Comments ---


class AddCommentArgs(_Arguments):
    task_id: int
    content: str = Field(..., min_length=1)
    author: str | None = None


@tool("add_comment", "Add a comment to a task", AddCommentArgs, mutating=True)
async def add_comment(context: ToolContext, args: AddCommentArgs) -> CommentResponse:
    async with context.session_factory() as session:
        comment = await comment_queries.add_comment(
            session, args.task_id, args.content, author=args.author, actor=context.actor
        )
    context.queue((EntityKind.task, args.task_id))
    return CommentResponse.model_validate(comment)


@tool("list_comments", "List the comments of a task", TaskIdArgs)
async def list_comments(context: ToolContext, args: TaskIdArgs) -> list[CommentResponse]:
    async with context.session_factory() as session:
        await task_queries.require_task(session, args.task_id)
        comments = await comment_queries.list_comments(session, args.task_id)
    return [CommentResponse.model_validate(c) for c in comments]


# --- Dependencies ---


class AddDependencyArgs(_Arguments):
    task_id: int = Field(..., description="Task that depends on another")
    depends_on_id: int = Field(..., description="Task that must be completed first")
    type: str | None = Field(default=None, description="finish_to_start or start_to_start")


class RemoveDependencyArgs(_Arguments):
    task_id: int
    dependency_id: int = Field(..., description="Dependency row id or predecessor task id")


@tool("add_task_dependency", "Make a task depend on another task", AddDependencyArgs, mutating=True)
async def add_task_dependency(context: ToolContext, args: AddDependencyArgs) -> DependencyResponse:
    dependency = await context.engine.add_dependency(
        args.task_id, args.depends_on_id, kind=args.type, actor=context.actor
    )
    return DependencyResponse.model_validate(dependency)


@tool("remove_task_dependency", "Remove a task dependency", RemoveDependencyArgs, mutating=True)
async def remove_task_dependency(context: ToolContext, args: RemoveDependencyArgs) -> dict[str, Any]:
    removed = await context.engine.remove_dependency(args.task_id, args.dependency_id, actor=context.actor)
    return {"removed": removed, "task_id": args.task_id}


@tool("list_task_dependencies", "List a task's dependencies and whether it can start", TaskIdArgs)
async def list_task_dependencies(context: ToolContext, args: TaskIdArgs) -> dict[str, Any]:
    return {
        "task_id": args.task_id,
        "dependencies": await context.engine.list_dependencies(args.task_id),
        "dependents": await context.engine.list_dependents(args.task_id),
        "can_start": await context.engine.can_start(args.task_id),
    }


# --- Search ---


class SemanticSearchArgs(_Arguments):
    query: str = Field(..., min_length=1)
    type: str = Field(default="task", description="task or project")
    project_id: int | None = None
    limit: int = Field(default=10, ge=1, le=100)


@tool("semantic_search", "Find tasks or projects similar to a text", SemanticSearchArgs)
async def semantic_search_tool(context: ToolContext, args: SemanticSearchArgs) -> dict[str, Any]:
    return await semantic_search(
        context.embedding_service,
        context.embedding_index,
        args.query,
        kind=args.type,
        project_id=args.project_id,
        limit=args.limit,
    )
