"""Board ordering for Headless PM.

Sorts the tasks of one project into status columns. Within a column,
tasks that can be picked up now come first, then tasks that unblock the
most work. The functions here are pure: dependency counts are computed by
the dependency engine and passed in.

Example usage:
    >>> summary = await engine.blocking_summary(project.id)
    >>> columns = order_board(tasks, summary)
    >>> columns["todo"][0].title
    'Design schema'
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from headless_pm.database.models.base import utc_now
from headless_pm.database.models.task import PRIORITY_RANK, TaskStatus
from headless_pm.database.queries.task import ARCHIVE_AFTER

BOARD_COLUMNS = (
    TaskStatus.todo,
    TaskStatus.in_progress,
    TaskStatus.review,
    TaskStatus.done,
    TaskStatus.cancelled,
)


@dataclass(frozen=True)
class DependencyCounts:
    """Dependency figures of one task used for board ordering.

    Attributes:
        predecessors: Number of immediate predecessors.
        remaining: Predecessors not yet done or cancelled.
        dependents: Number of immediate successors.
    """

    predecessors: int = 0
    remaining: int = 0
    dependents: int = 0


NO_DEPENDENCIES = DependencyCounts()


def is_archived(task: Any, now: datetime | None = None) -> bool:
    """Whether a task is hidden from the default board.

    Done tasks completed more than 48 hours before ``now`` are archived.
    """
    if task.status != TaskStatus.done or task.completed_at is None:
        return False
    return task.completed_at < (now or utc_now()) - ARCHIVE_AFTER


def board_sort_key(task: Any, counts: DependencyCounts) -> tuple:
    """Sort key placing a task within its status column.

    Order: unblocked first, more dependents first, fewer predecessors
    first, higher priority first, newest first, then lowest id.
    """
    created = task.created_at.timestamp() if task.created_at is not None else 0.0
    return (
        counts.remaining > 0,
        -counts.dependents,
        counts.predecessors,
        PRIORITY_RANK[task.priority],
        -created,
        task.id,
    )


def order_board(
    tasks: Iterable[Any],
    summary: Mapping[int, DependencyCounts],
    now: datetime | None = None,
) -> dict[str, list[Any]]:
    """Group tasks by status and order each column.

    Args:
        tasks: Tasks of one project.
        summary: Dependency counts keyed by task id; missing ids count as
            having no dependencies.
        now: Reference time for archival (defaults to the current time).

    Returns:
        Mapping of status value to ordered tasks, with every column
        present even when empty.
    """
    now = now or utc_now()
    columns: dict[str, list[Any]] = {status.value: [] for status in BOARD_COLUMNS}

    for task in tasks:
        if is_archived(task, now):
            continue
        columns[task.status.value].append(task)

    for column in columns.values():
        column.sort(key=lambda t: board_sort_key(t, summary.get(t.id, NO_DEPENDENCIES)))

    return columns
