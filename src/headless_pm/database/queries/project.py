"""Project CRUD query functions for Headless PM.

Provides async functions for creating, reading, updating, and deleting
Project records, resolving the ``{project}`` path segment (id or name),
and listing the users involved in a project.
"""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import delete, func, select, union
from sqlalchemy.ext.asyncio import AsyncSession

from headless_pm.database.connection import transaction
from headless_pm.database.models.embedding import EmbeddingRecord, EntityKind
from headless_pm.database.models.epic import Epic
from headless_pm.database.models.label import Label
from headless_pm.database.models.project import Project, ProjectStatus, project_members
from headless_pm.database.models.task import Task, task_labels
from headless_pm.database.models.user import User
from headless_pm.database.queries.cascade import TaskDeletion, purge_tasks
from headless_pm.errors import DuplicateEntryError, InvalidInputError, NotFoundError

logger = structlog.get_logger(__name__)

PROJECT_FIELDS = {"name", "description", "status", "owner_id"}


def parse_project_status(value: ProjectStatus | str) -> ProjectStatus:
    """Coerce a status name into ProjectStatus.

    Raises:
        InvalidInputError: If the name is not a known status.
    """
    if isinstance(value, ProjectStatus):
        return value
    try:
        return ProjectStatus(value)
    except ValueError:
        raise InvalidInputError(f"Invalid project status: {value}", field="status") from None


async def _ensure_name_available(
    session: AsyncSession,
    name: str,
    exclude_id: int | None = None,
) -> None:
    stmt = select(Project.id).where(
        Project.name == name,
        Project.status != ProjectStatus.archived,
    )
    if exclude_id is not None:
        stmt = stmt.where(Project.id != exclude_id)
    if (await session.execute(stmt)).first() is not None:
        raise DuplicateEntryError(f"Project '{name}' already exists", field="name")


async def create_project(
    session: AsyncSession,
    name: str,
    description: str | None = None,
    status: ProjectStatus | str = ProjectStatus.active,
    owner_id: int | None = None,
) -> Project:
    """Create a new project.

    Args:
        session: Active async database session.
        name: Project name, unique among non-archived projects.
        description: Optional description.
        status: Initial status (default active).
        owner_id: Optional owning user; also recorded as an admin member.

    Returns:
        The newly created Project instance.

    Raises:
        InvalidInputError: If the name is blank or the status unknown.
        DuplicateEntryError: If a non-archived project already uses the name.
        NotFoundError: If owner_id does not reference a user.
    """
    if not name or not name.strip():
        raise InvalidInputError("name is required", field="name")
    project_status = parse_project_status(status)
    name = name.strip()

    async with transaction(session):
        if project_status != ProjectStatus.archived:
            await _ensure_name_available(session, name)
        if owner_id is not None and await session.get(User, owner_id) is None:
            raise NotFoundError("User not found", field="owner_id")

        project = Project(
            name=name,
            description=description,
            status=project_status,
            owner_id=owner_id,
        )
        session.add(project)
        await session.flush()
        if owner_id is not None:
            await session.execute(
                project_members.insert().values(project_id=project.id, user_id=owner_id, role="admin")
            )
        await session.refresh(project)

    logger.info(
        "project_created",
        project_id=project.id,
        name=name,
        status=project.status.value,
    )
    return project


async def get_project(session: AsyncSession, project_id: int) -> Project | None:
    """Retrieve a project by ID.

    Args:
        session: Active async database session.
        project_id: Id of the project to retrieve.

    Returns:
        The Project instance if found, None otherwise.
    """
    stmt = select(Project).where(Project.id == project_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_project_by_name(session: AsyncSession, name: str) -> Project | None:
    """Retrieve a non-archived project by its name."""
    stmt = select(Project).where(
        Project.name == name,
        Project.status != ProjectStatus.archived,
    )
    result = await session.execute(stmt)
    return result.scalars().first()


async def resolve_project(session: AsyncSession, ref: str | int) -> Project:
    """Resolve a ``{project}`` reference that is either an id or a name.

    The reference is parsed as an integer id first; when that fails or
    finds nothing, it is looked up by name among non-archived projects.

    Args:
        session: Active async database session.
        ref: Numeric id or project name.

    Returns:
        The matching Project.

    Raises:
        NotFoundError: If neither lookup matches.
    """
    project: Project | None = None
    try:
        project_id = int(ref)
    except (TypeError, ValueError):
        project_id = None

    if project_id is not None:
        project = await get_project(session, project_id)
    if project is None:
        project = await get_project_by_name(session, str(ref))
    if project is None:
        raise NotFoundError("Project not found", field="project")
    return project


async def list_projects(
    session: AsyncSession,
    status: ProjectStatus | None = None,
) -> list[Project]:
    """List projects, optionally filtered by status, in id order.

    Args:
        session: Active async database session.
        status: Optional status to filter by.

    Returns:
        List of Project instances.
    """
    stmt = select(Project)
    if status is not None:
        stmt = stmt.where(Project.status == status)
    stmt = stmt.order_by(Project.id.asc())
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def update_project(
    session: AsyncSession,
    project_id: int,
    changes: dict[str, Any],
) -> Project:
    """Apply field changes to a project.

    Args:
        session: Active async database session.
        project_id: Project to update.
        changes: Field name to new value; only PROJECT_FIELDS are accepted.

    Returns:
        The updated Project instance.

    Raises:
        InvalidInputError: On unknown fields, blank names or unknown statuses.
        DuplicateEntryError: If the new name collides with another project.
        NotFoundError: If the project or new owner does not exist.
    """
    changes = dict(changes)
    for key in changes:
        if key not in PROJECT_FIELDS:
            raise InvalidInputError(f"Unknown field: {key}", field=key)
    if "name" in changes:
        if not (changes["name"] or "").strip():
            raise InvalidInputError("name is required", field="name")
        changes["name"] = changes["name"].strip()
    if "status" in changes:
        changes["status"] = parse_project_status(changes["status"])

    async with transaction(session):
        project = await session.get(Project, project_id)
        if project is None:
            raise NotFoundError("Project not found", field="project")

        new_name = changes.get("name", project.name)
        new_status = changes.get("status", project.status)
        if new_status != ProjectStatus.archived and (
            new_name != project.name or project.status == ProjectStatus.archived
        ):
            await _ensure_name_available(session, new_name, exclude_id=project.id)
        if changes.get("owner_id") is not None and await session.get(User, changes["owner_id"]) is None:
            raise NotFoundError("User not found", field="owner_id")

        for key, value in changes.items():
            setattr(project, key, value)
        await session.flush()
        await session.refresh(project)

    logger.info("project_updated", project_id=project_id, fields=sorted(changes))
    return project


async def delete_project(session: AsyncSession, project_id: int) -> TaskDeletion:
    """Delete a project and everything that belongs to it.

    In one transaction: dependency rows touching the project's tasks, the
    tasks' comments, attachments, label/watcher associations and activity,
    the tasks, epics, labels, member rows, embeddings and the project.

    Args:
        session: Active async database session.
        project_id: Project to delete.

    Returns:
        TaskDeletion with the deleted task ids and orphaned attachment paths.

    Raises:
        NotFoundError: If the project does not exist.
    """
    async with transaction(session):
        project = await session.get(Project, project_id)
        if project is None:
            raise NotFoundError("Project not found", field="project")

        task_ids = list(
            (await session.execute(select(Task.id).where(Task.project_id == project_id).order_by(Task.id)))
            .scalars()
            .all()
        )
        outcome = await purge_tasks(session, task_ids)

        label_ids = select(Label.id).where(Label.project_id == project_id)
        await session.execute(delete(task_labels).where(task_labels.c.label_id.in_(label_ids)))
        await session.execute(delete(Epic).where(Epic.project_id == project_id))
        await session.execute(delete(Label).where(Label.project_id == project_id))
        await session.execute(delete(project_members).where(project_members.c.project_id == project_id))
        await session.execute(
            delete(EmbeddingRecord).where(
                EmbeddingRecord.entity_type == EntityKind.project,
                EmbeddingRecord.entity_id == project_id,
            )
        )
        await session.delete(project)

    logger.info(
        "project_deleted",
        project_id=project_id,
        deleted_tasks=len(outcome.task_ids),
        deleted_attachments=len(outcome.attachment_paths),
    )
    return outcome


async def list_project_users(session: AsyncSession, project_id: int) -> list[User]:
    """List users that are members of a project or assigned to one of its tasks."""
    member_ids = select(project_members.c.user_id).where(project_members.c.project_id == project_id)
    assignee_ids = select(Task.assignee_id).where(
        Task.project_id == project_id,
        Task.assignee_id.is_not(None),
    )
    user_ids = union(member_ids, assignee_ids).subquery()
    stmt = select(User).where(User.id.in_(select(user_ids))).order_by(User.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_project_assignees(session: AsyncSession, project_id: int) -> list[User]:
    """List users assigned to at least one task of a project."""
    stmt = (
        select(User)
        .join(Task, Task.assignee_id == User.id)
        .where(Task.project_id == project_id)
        .distinct()
        .order_by(User.id)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def add_project_member(
    session: AsyncSession,
    project_id: int,
    user_id: int,
    role: str = "member",
) -> None:
    """Add a user to a project's member list.

    Raises:
        NotFoundError: If the project or user does not exist.
        DuplicateEntryError: If the user is already a member.
    """
    async with transaction(session):
        if await session.get(Project, project_id) is None:
            raise NotFoundError("Project not found", field="project")
        if await session.get(User, user_id) is None:
            raise NotFoundError("User not found", field="user_id")
        await session.execute(
            project_members.insert().values(project_id=project_id, user_id=user_id, role=role)
        )

    logger.info("project_member_added", project_id=project_id, user_id=user_id, role=role)


async def project_task_titles(session: AsyncSession, project_id: int) -> list[str]:
    """Titles of a project's tasks in id order, used to embed the project."""
    result = await session.execute(
        select(Task.title).where(Task.project_id == project_id).order_by(Task.id)
    )
    return list(result.scalars().all())


async def task_status_counts(session: AsyncSession) -> dict[int, dict[str, int]]:
    """Count tasks per project and status.

    Returns:
        Mapping of project id to ``{status_value: count}``; projects
        without tasks are absent.
    """
    stmt = select(Task.project_id, Task.status, func.count(Task.id)).group_by(
        Task.project_id, Task.status
    )
    counts: dict[int, dict[str, int]] = {}
    for project_id, status, count in (await session.execute(stmt)).all():
        counts.setdefault(project_id, {})[status.value] = count
    return counts
