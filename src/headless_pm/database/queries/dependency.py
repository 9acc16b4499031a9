"""Task dependency query functions for Headless PM.

Reachability over the dependency graph is computed by recursive CTEs.
Edges point from a successor (``task_id``) to the predecessor it requires
(``depends_on_id``). The CTEs use UNION rather than UNION ALL, so a cycle
left in a corrupt database still terminates.

Row-level writes here do not open transactions; the dependency engine
wraps them together with the cycle check.
"""

from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from headless_pm.database.models.task import Task, TaskDependency


def _predecessor_cte(task_id: int):
    reach = (
        select(TaskDependency.depends_on_id.label("id"))
        .where(TaskDependency.task_id == task_id)
        .cte("predecessors", recursive=True)
    )
    return reach.union(
        select(TaskDependency.depends_on_id).join(reach, TaskDependency.task_id == reach.c.id)
    )


def _successor_cte(task_id: int):
    reach = (
        select(TaskDependency.task_id.label("id"))
        .where(TaskDependency.depends_on_id == task_id)
        .cte("successors", recursive=True)
    )
    return reach.union(
        select(TaskDependency.task_id).join(reach, TaskDependency.depends_on_id == reach.c.id)
    )


async def has_path(session: AsyncSession, start_id: int, target_id: int) -> bool:
    """Whether ``target_id`` is a transitive predecessor of ``start_id``."""
    reach = _predecessor_cte(start_id)
    result = await session.execute(select(reach.c.id).where(reach.c.id == target_id).limit(1))
    return result.first() is not None


async def dependency_chain_ids(session: AsyncSession, task_id: int) -> list[int]:
    """Ids of all transitive predecessors of a task, ascending."""
    reach = _predecessor_cte(task_id)
    result = await session.execute(
        select(reach.c.id).where(reach.c.id != task_id).order_by(reach.c.id)
    )
    return list(result.scalars().all())


async def dependent_chain_ids(session: AsyncSession, task_id: int) -> list[int]:
    """Ids of all transitive successors of a task, ascending."""
    reach = _successor_cte(task_id)
    result = await session.execute(
        select(reach.c.id).where(reach.c.id != task_id).order_by(reach.c.id)
    )
    return list(result.scalars().all())


async def find_dependency(
    session: AsyncSession,
    task_id: int,
    depends_on_id: int,
) -> TaskDependency | None:
    """Return the edge ``task_id -> depends_on_id`` if present."""
    result = await session.execute(
        select(TaskDependency).where(
            TaskDependency.task_id == task_id,
            TaskDependency.depends_on_id == depends_on_id,
        )
    )
    return result.scalar_one_or_none()


async def insert_dependency(
    session: AsyncSession,
    task_id: int,
    depends_on_id: int,
    kind: str,
) -> TaskDependency:
    """Insert an edge inside the caller's transaction."""
    dependency = TaskDependency(task_id=task_id, depends_on_id=depends_on_id, type=kind)
    session.add(dependency)
    await session.flush()
    await session.refresh(dependency)
    return dependency


async def delete_dependency(
    session: AsyncSession,
    task_id: int,
    dependency_id: int,
) -> TaskDependency | None:
    """Delete one of a task's edges inside the caller's transaction.

    ``dependency_id`` is matched first as the row id and then as the
    predecessor task id, so clients may address an edge either way.

    Returns:
        The deleted row, or None when nothing matched.
    """
    result = await session.execute(
        select(TaskDependency).where(
            TaskDependency.task_id == task_id,
            TaskDependency.id == dependency_id,
        )
    )
    dependency = result.scalar_one_or_none()
    if dependency is None:
        dependency = await find_dependency(session, task_id, dependency_id)
    if dependency is None:
        return None
    await session.execute(delete(TaskDependency).where(TaskDependency.id == dependency.id))
    return dependency


async def list_predecessors(
    session: AsyncSession,
    task_id: int,
) -> list[tuple[TaskDependency, Task]]:
    """Immediate predecessors of a task with their edges, by predecessor id."""
    stmt = (
        select(TaskDependency, Task)
        .join(Task, Task.id == TaskDependency.depends_on_id)
        .where(TaskDependency.task_id == task_id)
        .order_by(Task.id)
    )
    result = await session.execute(stmt)
    return [(row[0], row[1]) for row in result.all()]


async def list_successors(
    session: AsyncSession,
    task_id: int,
) -> list[tuple[TaskDependency, Task]]:
    """Immediate successors of a task with their edges, by successor id."""
    stmt = (
        select(TaskDependency, Task)
        .join(Task, Task.id == TaskDependency.task_id)
        .where(TaskDependency.depends_on_id == task_id)
        .order_by(Task.id)
    )
    result = await session.execute(stmt)
    return [(row[0], row[1]) for row in result.all()]


async def project_edges(session: AsyncSession, project_id: int) -> list[TaskDependency]:
    """Dependency rows whose both endpoints belong to a project."""
    successor = select(Task.id).where(Task.project_id == project_id)
    stmt = (
        select(TaskDependency)
        .where(
            TaskDependency.task_id.in_(successor),
            TaskDependency.depends_on_id.in_(successor),
        )
        .order_by(TaskDependency.id)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def dependency_ids_for_tasks(
    session: AsyncSession,
    task_ids: list[int],
) -> dict[int, list[int]]:
    """Map each task id to the ids of its immediate predecessors."""
    mapping: dict[int, list[int]] = {task_id: [] for task_id in task_ids}
    if not task_ids:
        return mapping
    stmt = (
        select(TaskDependency.task_id, TaskDependency.depends_on_id)
        .where(TaskDependency.task_id.in_(task_ids))
        .order_by(TaskDependency.depends_on_id)
    )
    for task_id, depends_on_id in (await session.execute(stmt)).all():
        mapping[task_id].append(depends_on_id)
    return mapping
