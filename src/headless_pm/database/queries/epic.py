"""Epic CRUD query functions for Headless PM.

Provides async functions for creating, reading, updating and deleting
Epic records, and for keeping each epic's ``progress`` in step with the
status of its member tasks.
"""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from headless_pm.database.connection import transaction
from headless_pm.database.models.epic import Epic, EpicStatus
from headless_pm.database.models.project import Project
from headless_pm.database.models.task import Task, TaskStatus
from headless_pm.database.queries.cascade import (
    TaskDeletion,
    collect_subtree,
    purge_tasks,
)
from headless_pm.errors import InvalidInputError, NotFoundError

logger = structlog.get_logger(__name__)

EPIC_FIELDS = {"name", "description", "status", "start_date", "end_date"}


def parse_epic_status(value: EpicStatus | str) -> EpicStatus:
    """Coerce a status name into EpicStatus.

    Raises:
        InvalidInputError: If the name is not a known status.
    """
    if isinstance(value, EpicStatus):
        return value
    try:
        return EpicStatus(value)
    except ValueError:
        raise InvalidInputError(f"Invalid epic status: {value}", field="status") from None


async def recalculate_epic_progress(session: AsyncSession, epic_id: int) -> int:
    """Recompute an epic's progress from its member tasks.

    Progress is ``done * 100 // total`` and 0 for an epic without tasks.

    Args:
        session: Session with an open transaction.
        epic_id: Epic to update.

    Returns:
        The new progress value.
    """
    total = await session.scalar(select(func.count(Task.id)).where(Task.epic_id == epic_id))
    done = await session.scalar(
        select(func.count(Task.id)).where(Task.epic_id == epic_id, Task.status == TaskStatus.done)
    )
    progress = (done or 0) * 100 // total if total else 0
    await session.execute(update(Epic).where(Epic.id == epic_id).values(progress=progress))
    return progress


async def create_epic(
    session: AsyncSession,
    project_id: int,
    name: str,
    description: str | None = None,
    status: EpicStatus | str = EpicStatus.planned,
    start_date: Any = None,
    end_date: Any = None,
) -> Epic:
    """Create a new epic in a project.

    Args:
        session: Active async database session.
        project_id: Owning project.
        name: Epic name.
        description: Optional description.
        status: Initial status.
        start_date: Optional planned start.
        end_date: Optional planned end.

    Returns:
        The newly created Epic instance.

    Raises:
        InvalidInputError: If the name is blank or the status unknown.
        NotFoundError: If the project does not exist.
    """
    if not name or not name.strip():
        raise InvalidInputError("name is required", field="name")
    epic_status = parse_epic_status(status)

    async with transaction(session):
        if await session.get(Project, project_id) is None:
            raise NotFoundError("Project not found", field="project_id")
        epic = Epic(
            project_id=project_id,
            name=name.strip(),
            description=description,
            status=epic_status,
            progress=0,
            start_date=start_date,
            end_date=end_date,
        )
        session.add(epic)
        await session.flush()
        await session.refresh(epic)

    logger.info("epic_created", epic_id=epic.id, project_id=project_id, name=epic.name)
    return epic


async def get_epic(session: AsyncSession, epic_id: int) -> Epic | None:
    """Retrieve an epic by ID."""
    result = await session.execute(select(Epic).where(Epic.id == epic_id))
    return result.scalar_one_or_none()


async def list_epics(
    session: AsyncSession,
    project_id: int | None = None,
    status: EpicStatus | None = None,
) -> list[Epic]:
    """List epics, optionally filtered by project and status, oldest first."""
    stmt = select(Epic)
    if project_id is not None:
        stmt = stmt.where(Epic.project_id == project_id)
    if status is not None:
        stmt = stmt.where(Epic.status == status)
    stmt = stmt.order_by(Epic.id.asc())
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def update_epic(
    session: AsyncSession,
    epic_id: int,
    changes: dict[str, Any],
) -> Epic:
    """Apply field changes to an epic.

    Args:
        session: Active async database session.
        epic_id: Epic to update.
        changes: Field name to new value; only EPIC_FIELDS are accepted.

    Returns:
        The updated Epic instance.

    Raises:
        InvalidInputError: On unknown fields, blank names or unknown statuses.
        NotFoundError: If the epic does not exist.
    """
    for key in changes:
        if key not in EPIC_FIELDS:
            raise InvalidInputError(f"Unknown field: {key}", field=key)
    if "status" in changes and changes["status"] is not None:
        changes = {**changes, "status": parse_epic_status(changes["status"])}
    if "name" in changes and not (changes["name"] or "").strip():
        raise InvalidInputError("name is required", field="name")

    async with transaction(session):
        epic = await session.get(Epic, epic_id)
        if epic is None:
            raise NotFoundError("Epic not found", field="epic_id")
        for key, value in changes.items():
            if key == "status" and value is None:
                continue
            setattr(epic, key, value)
        await session.flush()
        await session.refresh(epic)

    logger.info("epic_updated", epic_id=epic_id, fields=sorted(changes))
    return epic


async def delete_epic(
    session: AsyncSession,
    epic_id: int,
    cascade_tasks: bool = False,
    max_depth: int = 64,
) -> TaskDeletion:
    """Delete an epic.

    With ``cascade_tasks`` every member task is deleted with the full task
    delete contract (subtasks, dependencies, comments, ...). Otherwise the
    member tasks are kept and their epic reference is cleared.

    Args:
        session: Active async database session.
        epic_id: Epic to delete.
        cascade_tasks: Delete member tasks instead of detaching them.
        max_depth: Subtask depth limit for cascaded task deletes.

    Returns:
        TaskDeletion listing deleted tasks (empty when detaching).

    Raises:
        NotFoundError: If the epic does not exist.
    """
    outcome = TaskDeletion()

    async with transaction(session):
        epic = await session.get(Epic, epic_id)
        if epic is None:
            raise NotFoundError("Epic not found", field="epic_id")

        member_ids = list(
            (await session.execute(select(Task.id).where(Task.epic_id == epic_id).order_by(Task.id)))
            .scalars()
            .all()
        )

        if cascade_tasks:
            to_delete: list[int] = []
            seen: set[int] = set()
            for task_id in member_ids:
                if task_id in seen:
                    continue
                subtree = await collect_subtree(session, task_id, max_depth)
                for tid in subtree:
                    if tid not in seen:
                        seen.add(tid)
                        to_delete.append(tid)
            outcome = await purge_tasks(session, to_delete)
        else:
            await session.execute(update(Task).where(Task.epic_id == epic_id).values(epic_id=None))

        await session.delete(epic)
        await session.flush()

        for other_epic in outcome.epic_ids - {epic_id}:
            await recalculate_epic_progress(session, other_epic)

    logger.info(
        "epic_deleted",
        epic_id=epic_id,
        cascade_tasks=cascade_tasks,
        member_tasks=len(member_ids),
        deleted_tasks=len(outcome.task_ids),
    )
    return outcome
