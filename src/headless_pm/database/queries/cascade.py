"""Cascade-delete helpers shared by the task, epic and project queries.

These functions never open or commit a transaction; callers run them
inside ``transaction(session)`` so that a whole cascade is atomic.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator, Sequence
from contextlib import aclosing
from dataclasses import dataclass, field

import structlog
from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from headless_pm.database.models.activity import Activity
from headless_pm.database.models.comment import Attachment, Comment
from headless_pm.database.models.embedding import EmbeddingRecord, EntityKind
from headless_pm.database.models.task import (
    Task,
    TaskDependency,
    task_labels,
    task_watchers,
)
from headless_pm.errors import InvalidInputError

logger = structlog.get_logger(__name__)

# Keeps IN lists under SQLite's bound-parameter limit
CHUNK_SIZE = 500


@dataclass
class TaskDeletion:
    """Outcome of a cascading task delete.

    Attributes:
        task_ids: Every deleted task id, root first.
        attachment_paths: Relative blob paths whose rows were deleted.
        epic_ids: Epics that lost member tasks.
    """

    task_ids: list[int] = field(default_factory=list)
    attachment_paths: list[str] = field(default_factory=list)
    epic_ids: set[int] = field(default_factory=set)


def chunked(values: Sequence[int], size: int = CHUNK_SIZE) -> Iterator[Sequence[int]]:
    """Yield consecutive slices of at most ``size`` values."""
    for start in range(0, len(values), size):
        yield values[start : start + size]


async def walk_subtree(session: AsyncSession, root_id: int) -> AsyncIterator[list[int]]:
    """Yield the descendants of a task one level at a time.

    A parent cycle left behind by a corrupt database terminates through
    the visited set.
    """
    seen = {root_id}
    frontier = [root_id]
    while frontier:
        children: list[int] = []
        for chunk in chunked(frontier):
            result = await session.execute(
                select(Task.id).where(Task.parent_id.in_(chunk)).order_by(Task.id)
            )
            children.extend(i for i in result.scalars() if i not in seen)
        if not children:
            return
        seen.update(children)
        yield children
        frontier = children


async def subtree_height(session: AsyncSession, root_id: int, limit: int) -> int:
    """Count the subtask levels below a task, stopping once past ``limit``."""
    height = 0
    async with aclosing(walk_subtree(session, root_id)) as levels:
        async for _ in levels:
            height += 1
            if height > limit:
                break
    return height


async def collect_subtree(
    session: AsyncSession,
    root_id: int,
    max_depth: int,
) -> list[int]:
    """Collect a task and all of its transitive subtasks.

    Traverses level by level so the depth guard is exact.

    Args:
        session: Session with an open transaction.
        root_id: Task at the top of the subtree.
        max_depth: Deepest subtask level that may be followed.

    Returns:
        Task ids in breadth-first order, root first.

    Raises:
        InvalidInputError: If the subtree is deeper than max_depth.
    """
    ids = [root_id]
    depth = 0

    async with aclosing(walk_subtree(session, root_id)) as levels:
        async for children in levels:
            depth += 1
            if depth > max_depth:
                logger.warning("subtask_depth_exceeded", task_id=root_id, max_depth=max_depth)
                raise InvalidInputError(
                    f"Subtask nesting exceeds the maximum depth of {max_depth}",
                    field="parent_id",
                )
            ids.extend(children)

    return ids


async def purge_tasks(session: AsyncSession, task_ids: Sequence[int]) -> TaskDeletion:
    """Delete tasks and every row that references them.

    Removes dependency rows on either side, comments, attachments, label
    and watcher associations, activity rows and task embeddings, then the
    task rows themselves.

    Args:
        session: Session with an open transaction.
        task_ids: Complete set of tasks to delete (subtasks included).

    Returns:
        TaskDeletion describing what was removed.
    """
    outcome = TaskDeletion(task_ids=list(task_ids))
    if not task_ids:
        return outcome

    for chunk in chunked(task_ids):
        paths = await session.execute(select(Attachment.path).where(Attachment.task_id.in_(chunk)))
        outcome.attachment_paths.extend(paths.scalars().all())
        epics = await session.execute(
            select(Task.epic_id).where(Task.id.in_(chunk), Task.epic_id.is_not(None)).distinct()
        )
        outcome.epic_ids.update(epics.scalars().all())

        await session.execute(
            delete(TaskDependency).where(
                or_(
                    TaskDependency.task_id.in_(chunk),
                    TaskDependency.depends_on_id.in_(chunk),
                )
            )
        )
        await session.execute(delete(Comment).where(Comment.task_id.in_(chunk)))
        await session.execute(delete(Attachment).where(Attachment.task_id.in_(chunk)))
        await session.execute(delete(task_labels).where(task_labels.c.task_id.in_(chunk)))
        await session.execute(delete(task_watchers).where(task_watchers.c.task_id.in_(chunk)))
        await session.execute(delete(Activity).where(Activity.task_id.in_(chunk)))
        await session.execute(
            delete(EmbeddingRecord).where(
                EmbeddingRecord.entity_type == EntityKind.task,
                EmbeddingRecord.entity_id.in_(chunk),
            )
        )

    for chunk in chunked(task_ids):
        await session.execute(delete(Task).where(Task.id.in_(chunk)))

    return outcome
