"""Label query functions for Headless PM.

Labels are project-scoped; a label can only be attached to tasks of its
own project.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from headless_pm.database.connection import transaction
from headless_pm.database.models.label import Label
from headless_pm.database.models.project import Project
from headless_pm.database.models.task import task_labels
from headless_pm.database.queries.activity import SYSTEM_ACTOR, Actor, record_activity
from headless_pm.database.queries.cascade import chunked
from headless_pm.database.queries.task import require_task
from headless_pm.errors import DuplicateEntryError, InvalidInputError, NotFoundError

logger = structlog.get_logger(__name__)

LABEL_PALETTE = (
    "#DC2626",
    "#059669",
    "#2563EB",
    "#7C3AED",
    "#EA580C",
    "#0891B2",
    "#4F46E5",
    "#BE123C",
    "#15803D",
    "#B91C1C",
    "#0E7490",
    "#6B21A8",
    "#C2410C",
    "#1E40AF",
    "#86198F",
    "#166534",
)


def color_for_name(name: str) -> str:
    """Pick a stable palette colour for a label name."""
    h = 0
    for ch in name:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    return LABEL_PALETTE[h % len(LABEL_PALETTE)]


async def _find_label(session: AsyncSession, project_id: int, name: str) -> Label | None:
    result = await session.execute(
        select(Label).where(Label.project_id == project_id, Label.name == name)
    )
    return result.scalar_one_or_none()


async def create_label(
    session: AsyncSession,
    project_id: int,
    name: str,
    color: str | None = None,
) -> Label:
    """Create a label in a project.

    Args:
        session: Active async database session.
        project_id: Owning project.
        name: Label name, unique within the project.
        color: Hex colour; picked from the palette when omitted.

    Returns:
        The new Label.

    Raises:
        InvalidInputError: If the name is blank.
        NotFoundError: If the project does not exist.
        DuplicateEntryError: If the project already has the label.
    """
    if not name or not name.strip():
        raise InvalidInputError("name is required", field="name")
    name = name.strip()

    async with transaction(session):
        if await session.get(Project, project_id) is None:
            raise NotFoundError("Project not found", field="project_id")
        if await _find_label(session, project_id, name) is not None:
            raise DuplicateEntryError(f"Label '{name}' already exists", field="name")
        label = Label(project_id=project_id, name=name, color=color or color_for_name(name))
        session.add(label)
        await session.flush()
        await session.refresh(label)

    logger.info("label_created", label_id=label.id, project_id=project_id, name=name)
    return label


async def list_labels(session: AsyncSession, project_id: int | None = None) -> list[Label]:
    """List labels, optionally of one project, ordered by name."""
    stmt = select(Label)
    if project_id is not None:
        stmt = stmt.where(Label.project_id == project_id)
    stmt = stmt.order_by(Label.project_id, Label.name)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def _get_or_create(session: AsyncSession, project_id: int, name: str) -> Label:
    label = await _find_label(session, project_id, name)
    if label is None:
        label = Label(project_id=project_id, name=name, color=color_for_name(name))
        session.add(label)
        await session.flush()
        logger.info("label_created", label_id=label.id, project_id=project_id, name=name)
    return label


async def get_or_create_label(session: AsyncSession, project_id: int, name: str) -> Label:
    """Return the project's label with this name, creating it if missing."""
    if not name or not name.strip():
        raise InvalidInputError("name is required", field="name")
    async with transaction(session):
        if await session.get(Project, project_id) is None:
            raise NotFoundError("Project not found", field="project_id")
        label = await _get_or_create(session, project_id, name.strip())
    return label


async def delete_label(session: AsyncSession, label_id: int) -> None:
    """Delete a label and detach it from every task.

    Raises:
        NotFoundError: If the label does not exist.
    """
    async with transaction(session):
        label = await session.get(Label, label_id)
        if label is None:
            raise NotFoundError("Label not found", field="label_id")
        await session.execute(delete(task_labels).where(task_labels.c.label_id == label_id))
        await session.delete(label)

    logger.info("label_deleted", label_id=label_id)


async def assign_labels_to_task(
    session: AsyncSession,
    task_id: int,
    names: Sequence[str],
    actor: Actor = SYSTEM_ACTOR,
) -> list[Label]:
    """Replace a task's labels with the named labels of its project.

    Missing labels are created with a palette colour.

    Args:
        session: Active async database session.
        task_id: Task to relabel.
        names: Label names; blanks and duplicates are ignored.
        actor: Who performs the change.

    Returns:
        The task's labels after the change, ordered by name.

    Raises:
        NotFoundError: If the task does not exist.
    """
    wanted = sorted({n.strip() for n in names if n and n.strip()})

    async with transaction(session):
        task = await require_task(session, task_id)
        before = [label.name for label in await _labels_of(session, task_id)]

        await session.execute(delete(task_labels).where(task_labels.c.task_id == task_id))
        labels = [await _get_or_create(session, task.project_id, name) for name in wanted]
        if labels:
            await session.execute(
                task_labels.insert(),
                [{"task_id": task_id, "label_id": label.id} for label in labels],
            )
        if before != wanted:
            record_activity(
                session,
                task,
                actor,
                action="updated",
                description="Labels updated",
                field_name="labels",
                old_value=",".join(before),
                new_value=",".join(wanted),
            )

    logger.info("task_labels_assigned", task_id=task_id, labels=wanted)
    return labels


async def _labels_of(session: AsyncSession, task_id: int) -> list[Label]:
    stmt = (
        select(Label)
        .join(task_labels, task_labels.c.label_id == Label.id)
        .where(task_labels.c.task_id == task_id)
        .order_by(Label.name)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_task_labels(session: AsyncSession, task_id: int) -> list[Label]:
    """Labels attached to a task, ordered by name."""
    return await _labels_of(session, task_id)


async def label_names_for_tasks(
    session: AsyncSession,
    task_ids: Sequence[int],
) -> dict[int, list[str]]:
    """Map each task id to its label names (sorted)."""
    names: dict[int, list[str]] = defaultdict(list)
    for chunk in chunked(list(task_ids)):
        stmt = (
            select(task_labels.c.task_id, Label.name)
            .join(Label, Label.id == task_labels.c.label_id)
            .where(task_labels.c.task_id.in_(chunk))
            .order_by(Label.name)
        )
        for task_id, name in (await session.execute(stmt)).all():
            names[task_id].append(name)
    return dict(names)
