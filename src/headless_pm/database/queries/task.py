"""Task CRUD query functions for Headless PM.

Provides async functions for creating, reading, updating, assigning and
deleting Task records. Every mutation writes its activity rows and
refreshes affected epic progress inside the same transaction, and keeps
``completed_at`` set exactly while the task is done.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from headless_pm.database.connection import transaction
from headless_pm.database.models.base import utc_now
from headless_pm.database.models.epic import Epic
from headless_pm.database.models.project import Project
from headless_pm.database.models.task import (
    PRIORITY_RANK,
    Task,
    TaskPriority,
    TaskStatus,
)
from headless_pm.database.models.user import User
from headless_pm.database.queries.activity import SYSTEM_ACTOR, Actor, record_activity
from headless_pm.database.queries.cascade import (
    TaskDeletion,
    collect_subtree,
    purge_tasks,
    subtree_height,
)
from headless_pm.database.queries.epic import recalculate_epic_progress
from headless_pm.errors import InvalidInputError, NotFoundError

logger = structlog.get_logger(__name__)

EDITABLE_FIELDS = {
    "title",
    "description",
    "status",
    "priority",
    "assignee",
    "assignee_id",
    "epic_id",
    "parent_id",
    "estimated_hours",
    "actual_hours",
    "story_points",
    "due_date",
    "start_date",
}

# Done tasks completed longer ago than this leave the default board
ARCHIVE_AFTER = timedelta(hours=48)

OPEN_STATUSES = (TaskStatus.todo, TaskStatus.in_progress, TaskStatus.review)


def parse_task_status(value: TaskStatus | str) -> TaskStatus:
    """Coerce a status name into TaskStatus.

    Raises:
        InvalidInputError: If the name is not a known status.
    """
    if isinstance(value, TaskStatus):
        return value
    try:
        return TaskStatus(value)
    except ValueError:
        raise InvalidInputError(f"Invalid status: {value}", field="status") from None


def parse_priority(value: TaskPriority | str) -> TaskPriority:
    """Coerce a priority name into TaskPriority.

    Raises:
        InvalidInputError: If the name is not a known priority.
    """
    if isinstance(value, TaskPriority):
        return value
    try:
        return TaskPriority(value)
    except ValueError:
        raise InvalidInputError(f"Invalid priority: {value}", field="priority") from None


async def require_task(session: AsyncSession, task_id: int) -> Task:
    """Load a task or raise NotFoundError."""
    task = await session.get(Task, task_id)
    if task is None:
        raise NotFoundError("Task not found", field="task_id")
    return task


async def _validate_parent(
    session: AsyncSession,
    project_id: int,
    parent_id: int,
    task_id: int | None,
    max_depth: int,
) -> int:
    """Check a prospective parent and return how many ancestors a child of it has."""
    parent = await session.get(Task, parent_id)
    if parent is None:
        raise NotFoundError("Parent task not found", field="parent_id")
    if parent.project_id != project_id:
        raise InvalidInputError("Parent task belongs to a different project", field="parent_id")

    # Walk up from the new parent; meeting the task itself would close a loop
    current: Task | None = parent
    depth = 0
    while current is not None:
        if task_id is not None and current.id == task_id:
            raise InvalidInputError("A task cannot be nested under itself", field="parent_id")
        depth += 1
        if depth > max_depth:
            raise InvalidInputError(
                f"Subtask nesting exceeds the maximum depth of {max_depth}",
                field="parent_id",
            )
        current = await session.get(Task, current.parent_id) if current.parent_id else None
    return depth


async def _validate_epic(session: AsyncSession, project_id: int, epic_id: int) -> None:
    epic = await session.get(Epic, epic_id)
    if epic is None:
        raise NotFoundError("Epic not found", field="epic_id")
    if epic.project_id != project_id:
        raise InvalidInputError("Epic belongs to a different project", field="epic_id")


async def _require_user(session: AsyncSession, user_id: int) -> User:
    user = await session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found", field="assignee_id")
    return user


async def create_task(
    session: AsyncSession,
    project_id: int,
    title: str,
    description: str | None = None,
    status: TaskStatus | str = TaskStatus.todo,
    priority: TaskPriority | str = TaskPriority.medium,
    parent_id: int | None = None,
    epic_id: int | None = None,
    assignee_id: int | None = None,
    assignee: str | None = None,
    estimated_hours: float | None = None,
    actual_hours: float | None = None,
    story_points: int | None = None,
    due_date: datetime | None = None,
    start_date: datetime | None = None,
    actor: Actor = SYSTEM_ACTOR,
    max_depth: int = 64,
) -> Task:
    """Create a new task.

    Args:
        session: Active async database session.
        project_id: Owning project.
        title: Short task description.
        description: Detailed description.
        status: Initial status (default todo).
        priority: Priority (default medium).
        parent_id: Optional parent task in the same project.
        epic_id: Optional epic in the same project.
        assignee_id: Optional assigned user.
        assignee: Display name of the assignee; defaults to the user's name.
        estimated_hours: Planning estimate.
        actual_hours: Time spent.
        story_points: Relative size.
        due_date: Optional deadline.
        start_date: Optional planned start.
        actor: Who creates the task.
        max_depth: Maximum subtask nesting.

    Returns:
        The newly created Task instance.

    Raises:
        InvalidInputError: On blank title, bad enum values or cross-project references.
        NotFoundError: If the project, parent, epic or assignee does not exist.
    """
    if not title or not title.strip():
        raise InvalidInputError("title is required", field="title")
    task_status = parse_task_status(status)
    task_priority = parse_priority(priority)

    async with transaction(session):
        if await session.get(Project, project_id) is None:
            raise NotFoundError("Project not found", field="project_id")
        if parent_id is not None:
            await _validate_parent(session, project_id, parent_id, None, max_depth)
        if epic_id is not None:
            await _validate_epic(session, project_id, epic_id)
        if assignee_id is not None:
            user = await _require_user(session, assignee_id)
            assignee = assignee or user.display_name

        task = Task(
            project_id=project_id,
            parent_id=parent_id,
            epic_id=epic_id,
            title=title.strip(),
            description=description,
            status=task_status,
            priority=task_priority,
            assignee=assignee,
            assignee_id=assignee_id,
            estimated_hours=estimated_hours,
            actual_hours=actual_hours,
            story_points=story_points,
            due_date=due_date,
            start_date=start_date,
            completed_at=utc_now() if task_status == TaskStatus.done else None,
            created_by=actor.user_id,
            updated_by=actor.user_id,
        )
        session.add(task)
        await session.flush()

        record_activity(
            session,
            task,
            actor,
            action="created",
            description=f"Task '{task.title}' created",
        )
        if epic_id is not None:
            await recalculate_epic_progress(session, epic_id)
        await session.flush()
        await session.refresh(task)

    logger.info(
        "task_created",
        task_id=task.id,
        project_id=project_id,
        title=task.title,
        status=task.status.value,
    )
    return task


async def get_task(session: AsyncSession, task_id: int) -> Task | None:
    """Retrieve a task by ID.

    Args:
        session: Active async database session.
        task_id: Id of the task to retrieve.

    Returns:
        The Task instance if found, None otherwise.
    """
    stmt = select(Task).where(Task.id == task_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_tasks(
    session: AsyncSession,
    project_id: int | None = None,
    status: TaskStatus | None = None,
    priority: TaskPriority | None = None,
    assignee_id: int | None = None,
    epic_id: int | None = None,
    parent_id: int | None = None,
    search: str | None = None,
    limit: int | None = None,
    offset: int = 0,
) -> list[Task]:
    """List tasks with optional filters, newest first.

    Args:
        session: Active async database session.
        project_id: Restrict to one project.
        status: Restrict to one status.
        priority: Restrict to one priority.
        assignee_id: Restrict to one assignee.
        epic_id: Restrict to one epic.
        parent_id: Restrict to direct subtasks of one task.
        search: Case-insensitive substring matched against title and description.
        limit: Maximum rows returned.
        offset: Rows skipped before the first returned row.

    Returns:
        List of matching Task instances.
    """
    stmt = select(Task)

    if project_id is not None:
        stmt = stmt.where(Task.project_id == project_id)
    if status is not None:
        stmt = stmt.where(Task.status == status)
    if priority is not None:
        stmt = stmt.where(Task.priority == priority)
    if assignee_id is not None:
        stmt = stmt.where(Task.assignee_id == assignee_id)
    if epic_id is not None:
        stmt = stmt.where(Task.epic_id == epic_id)
    if parent_id is not None:
        stmt = stmt.where(Task.parent_id == parent_id)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(Task.title.ilike(pattern), Task.description.ilike(pattern)))

    stmt = stmt.order_by(Task.created_at.desc(), Task.id.desc()).offset(offset)
    if limit is not None:
        stmt = stmt.limit(limit)

    result = await session.execute(stmt)
    return list(result.scalars().all())


def _describe_change(task: Task, field: str, old: Any, new: Any) -> tuple[str, str]:
    def show(value: Any) -> str:
        return str(getattr(value, "value", value)) if value is not None else "none"

    if field == "status":
        return "status_changed", f"Status changed from {show(old)} to {show(new)}"
    if field == "priority":
        return "priority_changed", f"Priority changed from {show(old)} to {show(new)}"
    if field == "assignee_id":
        if new is None:
            return "assigned", "Task unassigned"
        return "assigned", f"Assigned to {task.assignee or new}"
    return "updated", f"{field.replace('_', ' ').capitalize()} updated"


async def update_task(
    session: AsyncSession,
    task_id: int,
    changes: dict[str, Any],
    actor: Actor = SYSTEM_ACTOR,
    max_depth: int = 64,
) -> Task:
    """Apply field changes to a task.

    Writes one activity row per changed field, maintains ``completed_at``
    and refreshes the progress of the old and new epic.

    Args:
        session: Active async database session.
        task_id: Task to update.
        changes: Field name to new value; only EDITABLE_FIELDS are accepted.
        actor: Who performs the change.
        max_depth: Maximum subtask nesting for a new parent.

    Returns:
        The updated Task instance.

    Raises:
        InvalidInputError: On unknown fields or invalid values.
        NotFoundError: If the task or a referenced entity does not exist.
    """
    changes = dict(changes)
    for key in changes:
        if key not in EDITABLE_FIELDS:
            raise InvalidInputError(f"Unknown field: {key}", field=key)
    if "title" in changes and not (changes["title"] or "").strip():
        raise InvalidInputError("title is required", field="title")
    if "status" in changes:
        changes["status"] = parse_task_status(changes["status"])
    if "priority" in changes:
        changes["priority"] = parse_priority(changes["priority"])

    async with transaction(session):
        task = await require_task(session, task_id)
        old_epic_id = task.epic_id

        if changes.get("parent_id") is not None and changes["parent_id"] != task.parent_id:
            depth = await _validate_parent(
                session, task.project_id, changes["parent_id"], task.id, max_depth
            )
            # The moved subtasks sink by the same amount as the task itself
            if depth + await subtree_height(session, task.id, max_depth) > max_depth:
                raise InvalidInputError(
                    f"Subtask nesting exceeds the maximum depth of {max_depth}",
                    field="parent_id",
                )
        if changes.get("epic_id") is not None:
            await _validate_epic(session, task.project_id, changes["epic_id"])
        if "assignee_id" in changes and "assignee" not in changes:
            if changes["assignee_id"] is None:
                changes["assignee"] = None
            else:
                user = await _require_user(session, changes["assignee_id"])
                changes["assignee"] = user.display_name
        elif changes.get("assignee_id") is not None:
            await _require_user(session, changes["assignee_id"])

        changed: list[str] = []
        # Apply the display name first so "assigned" activity can read it
        for key in sorted(changes, key=lambda k: k != "assignee"):
            new_value = changes[key]
            old_value = getattr(task, key)
            if old_value == new_value:
                continue
            setattr(task, key, new_value)
            changed.append(key)
            if key == "assignee" and "assignee_id" in changes:
                continue
            action, description = _describe_change(task, key, old_value, new_value)
            record_activity(
                session,
                task,
                actor,
                action=action,
                description=description,
                field_name=key,
                old_value=old_value,
                new_value=new_value,
            )

        if task.status == TaskStatus.done:
            if task.completed_at is None:
                task.completed_at = utc_now()
        else:
            task.completed_at = None
        task.updated_by = actor.user_id
        await session.flush()

        for epic_id in {old_epic_id, task.epic_id} - {None}:
            await recalculate_epic_progress(session, epic_id)
        await session.flush()
        await session.refresh(task)

    logger.info("task_updated", task_id=task_id, fields=changed)
    return task


async def assign_task(
    session: AsyncSession,
    task_id: int,
    assignee_id: int | None,
    actor: Actor = SYSTEM_ACTOR,
) -> Task:
    """Assign a task to a user, or unassign it with None."""
    return await update_task(session, task_id, {"assignee_id": assignee_id}, actor=actor)


async def delete_task(
    session: AsyncSession,
    task_id: int,
    max_depth: int = 64,
) -> TaskDeletion:
    """Delete a task, all of its subtasks and every row referencing them.

    The whole cascade runs in one transaction; exceeding the subtask depth
    limit rolls everything back.

    Args:
        session: Active async database session.
        task_id: Task to delete.
        max_depth: Maximum subtask nesting followed.

    Returns:
        TaskDeletion with the deleted ids and orphaned attachment paths.

    Raises:
        NotFoundError: If the task does not exist.
        InvalidInputError: If the subtree is deeper than max_depth.
    """
    async with transaction(session):
        await require_task(session, task_id)
        ids = await collect_subtree(session, task_id, max_depth)
        outcome = await purge_tasks(session, ids)
        for epic_id in outcome.epic_ids:
            await recalculate_epic_progress(session, epic_id)

    logger.info("task_deleted", task_id=task_id, deleted_tasks=len(outcome.task_ids))
    return outcome


async def list_subtasks(session: AsyncSession, task_id: int) -> list[Task]:
    """List direct subtasks of a task in id order."""
    result = await session.execute(select(Task).where(Task.parent_id == task_id).order_by(Task.id))
    return list(result.scalars().all())


async def list_overdue_tasks(session: AsyncSession, now: datetime | None = None) -> list[Task]:
    """List open tasks whose due date has passed, earliest due first."""
    now = now or utc_now()
    stmt = (
        select(Task)
        .where(Task.due_date.is_not(None), Task.due_date < now, Task.status.in_(OPEN_STATUSES))
        .order_by(Task.due_date.asc(), Task.id.asc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_high_priority_tasks(session: AsyncSession) -> list[Task]:
    """List open urgent and high priority tasks, urgent first."""
    stmt = select(Task).where(
        Task.priority.in_((TaskPriority.urgent, TaskPriority.high)),
        Task.status.in_(OPEN_STATUSES),
    )
    result = await session.execute(stmt)
    tasks = list(result.scalars().all())
    tasks.sort(key=lambda t: (PRIORITY_RANK[t.priority], t.id))
    return tasks


async def list_archived_tasks(
    session: AsyncSession,
    project_id: int,
    now: datetime | None = None,
) -> list[Task]:
    """List done tasks hidden from the board, most recently completed first."""
    cutoff = (now or utc_now()) - ARCHIVE_AFTER
    stmt = (
        select(Task)
        .where(
            Task.project_id == project_id,
            Task.status == TaskStatus.done,
            Task.completed_at.is_not(None),
            Task.completed_at < cutoff,
        )
        .order_by(Task.completed_at.desc(), Task.id.desc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())
