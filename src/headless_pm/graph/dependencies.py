"""Task dependency engine for Headless PM.

Owns the contracts of the ``task_dependencies`` table: edges are never
self-referential, never duplicated and never close a cycle, and both
endpoints always live in the same project.

Reachability runs as recursive CTEs in SQLite. ``InMemoryDependencyGraph``
answers the same questions from a list of edges with iterative traversal
and yields identical results.

Dependency writes are serialized per project: ``add_dependency`` takes a
project-scoped ``asyncio.Lock`` and repeats the cycle check inside its
write transaction, so two concurrent adds cannot together form a cycle.

Example usage:
    >>> engine = DependencyEngine(session_factory)
    >>> await engine.add_dependency(task_id=2, depends_on_id=1)
    >>> await engine.can_start(2)
    False
    >>> [t.id for t in await engine.dependency_chain(3)]
    [1, 2]
"""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from collections.abc import Iterable
from datetime import datetime
from typing import Any, Callable

import structlog
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from headless_pm.database.connection import transaction
from headless_pm.database.models.task import DependencyType, Task, TaskDependency, TaskStatus
from headless_pm.database.queries import dependency as dependency_queries
from headless_pm.database.queries.activity import SYSTEM_ACTOR, Actor, record_activity
from headless_pm.database.queries.task import require_task
from headless_pm.errors import (
    CircularDependencyError,
    DuplicateEntryError,
    InvalidInputError,
    NotFoundError,
)
from headless_pm.graph.board import DependencyCounts

logger = structlog.get_logger(__name__)

SessionFactory = Callable[[], AsyncSession]

# Predecessors in these states no longer hold anything up on the board
SETTLED_STATUSES = (TaskStatus.done, TaskStatus.cancelled)


class LinkedTask(BaseModel):
    """A task reached through one dependency edge.

    Attributes:
        dependency_id: Id of the edge row.
        type: Dependency kind stored on the edge.
        task_id: Id of the task at the other end.
        title: Task title.
        status: Task status value.
        priority: Task priority value.
        created_at: When the edge was created.
    """

    dependency_id: int
    type: str
    task_id: int
    title: str
    status: str
    priority: str
    created_at: datetime | None = None


def parse_dependency_type(kind: str | None) -> DependencyType:
    """Coerce a dependency kind, defaulting to finish_to_start.

    Raises:
        InvalidInputError: If the kind is not supported.
    """
    if kind is None or kind == "":
        return DependencyType.finish_to_start
    try:
        return DependencyType(kind)
    except ValueError:
        raise InvalidInputError(f"Unsupported dependency type: {kind}", field="type") from None


def predecessor_ready(kind: str | None, status: TaskStatus) -> bool:
    """Readiness rule of one edge given the predecessor's status.

    Raises:
        InvalidInputError: If the stored kind is not supported.
    """
    dependency_type = parse_dependency_type(kind)
    if dependency_type == DependencyType.start_to_start:
        return status != TaskStatus.todo
    return status == TaskStatus.done


def _link(dependency: TaskDependency, task: Task) -> LinkedTask:
    return LinkedTask(
        dependency_id=dependency.id,
        type=dependency.type,
        task_id=task.id,
        title=task.title,
        status=task.status.value,
        priority=task.priority.value,
        created_at=dependency.created_at,
    )


async def evaluate_can_start(session: AsyncSession, task_id: int) -> bool:
    """Whether every immediate predecessor of a task is ready.

    Only immediate predecessors are consulted; a task whose predecessor
    is done can start even if that predecessor's own predecessors are not.

    Raises:
        InvalidInputError: If an edge carries an unsupported kind.
    """
    predecessors = await dependency_queries.list_predecessors(session, task_id)
    return all(predecessor_ready(dep.type, task.status) for dep, task in predecessors)


async def can_start_map(session: AsyncSession, task_ids: list[int]) -> dict[int, bool]:
    """Evaluate readiness for many tasks with one query.

    Tasks with an unsupported edge kind are reported as not startable
    rather than failing the whole listing.
    """
    ready = {task_id: True for task_id in task_ids}
    if not task_ids:
        return ready

    stmt = (
        select(TaskDependency.task_id, TaskDependency.type, Task.status)
        .join(Task, Task.id == TaskDependency.depends_on_id)
        .where(TaskDependency.task_id.in_(task_ids))
    )
    for task_id, kind, status in (await session.execute(stmt)).all():
        if not ready[task_id]:
            continue
        try:
            ready[task_id] = predecessor_ready(kind, status)
        except InvalidInputError:
            logger.warning("dependency_type_unsupported", task_id=task_id, type=kind)
            ready[task_id] = False
    return ready


async def summarize_project(session: AsyncSession, project_id: int) -> dict[int, DependencyCounts]:
    """Dependency counts for every task of a project that has edges."""
    edges = await dependency_queries.project_edges(session, project_id)
    statuses = dict(
        (await session.execute(select(Task.id, Task.status).where(Task.project_id == project_id))).all()
    )

    predecessors: dict[int, int] = defaultdict(int)
    remaining: dict[int, int] = defaultdict(int)
    dependents: dict[int, int] = defaultdict(int)
    for edge in edges:
        predecessors[edge.task_id] += 1
        dependents[edge.depends_on_id] += 1
        if statuses.get(edge.depends_on_id) not in SETTLED_STATUSES:
            remaining[edge.task_id] += 1

    return {
        task_id: DependencyCounts(
            predecessors=predecessors[task_id],
            remaining=remaining[task_id],
            dependents=dependents[task_id],
        )
        for task_id in set(predecessors) | set(dependents)
    }


class DependencyEngine:
    """Validated writes and reachability queries over task dependencies.

    Attributes:
        session_factory: Callable that produces async database sessions.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        """Initialize the engine.

        Args:
            session_factory: Callable returning new AsyncSession instances.
        """
        self.session_factory = session_factory
        self._locks: dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._logger = logger.bind(component="DependencyEngine")

    def project_lock(self, project_id: int) -> asyncio.Lock:
        """Write lock serializing dependency mutations within one project."""
        return self._locks[project_id]

    async def add_dependency(
        self,
        task_id: int,
        depends_on_id: int,
        kind: str | None = None,
        actor: Actor = SYSTEM_ACTOR,
    ) -> TaskDependency:
        """Record that ``task_id`` requires ``depends_on_id``.

        Args:
            task_id: Successor task.
            depends_on_id: Predecessor task.
            kind: Dependency kind; defaults to finish_to_start.
            actor: Who adds the edge.

        Returns:
            The inserted TaskDependency row.

        Raises:
            InvalidInputError: On self-dependency, cross-project edges or
                unsupported kinds.
            NotFoundError: If either task does not exist.
            DuplicateEntryError: If the edge already exists.
            CircularDependencyError: If the edge would close a cycle.
        """
        if task_id == depends_on_id:
            raise InvalidInputError("A task cannot depend on itself", field="depends_on_id")
        dependency_type = parse_dependency_type(kind)

        async with self.session_factory() as session:
            task = await session.get(Task, task_id)
            if task is None:
                raise NotFoundError("Task not found", field="task_id")
            predecessor = await session.get(Task, depends_on_id)
            if predecessor is None:
                raise NotFoundError("Dependency task not found", field="depends_on_id")
            if predecessor.project_id != task.project_id:
                raise InvalidInputError(
                    "Dependencies must stay within one project",
                    field="depends_on_id",
                )
            project_id = task.project_id

        async with self.project_lock(project_id):
            async with self.session_factory() as session:
                async with transaction(session):
                    if await dependency_queries.find_dependency(session, task_id, depends_on_id):
                        raise DuplicateEntryError("Dependency already exists", field="depends_on_id")
                    if await dependency_queries.has_path(session, depends_on_id, task_id):
                        self._logger.info(
                            "dependency_rejected",
                            task_id=task_id,
                            depends_on_id=depends_on_id,
                            reason="cycle",
                        )
                        raise CircularDependencyError(
                            "Adding this dependency would create a circular dependency",
                            field="depends_on_id",
                        )
                    dependency = await dependency_queries.insert_dependency(
                        session, task_id, depends_on_id, dependency_type.value
                    )
                    task = await require_task(session, task_id)
                    record_activity(
                        session,
                        task,
                        actor,
                        action="dependency_added",
                        description=f"Now depends on task #{depends_on_id}",
                        field_name="dependencies",
                        new_value=depends_on_id,
                    )

        self._logger.info(
            "dependency_added",
            dependency_id=dependency.id,
            task_id=task_id,
            depends_on_id=depends_on_id,
            type=dependency_type.value,
        )
        return dependency

    async def remove_dependency(
        self,
        task_id: int,
        dependency_id: int,
        actor: Actor = SYSTEM_ACTOR,
    ) -> bool:
        """Remove one of a task's dependencies.

        Removing an edge that is already gone is not an error.

        Args:
            task_id: Successor task.
            dependency_id: Edge row id, or the predecessor's task id.
            actor: Who removes the edge.

        Returns:
            True if a row was deleted.

        Raises:
            NotFoundError: If the task does not exist.
        """
        async with self.session_factory() as session:
            task = await session.get(Task, task_id)
            if task is None:
                raise NotFoundError("Task not found", field="task_id")
            project_id = task.project_id

        async with self.project_lock(project_id):
            async with self.session_factory() as session:
                async with transaction(session):
                    removed = await dependency_queries.delete_dependency(session, task_id, dependency_id)
                    if removed is not None:
                        task = await require_task(session, task_id)
                        record_activity(
                            session,
                            task,
                            actor,
                            action="dependency_removed",
                            description=f"No longer depends on task #{removed.depends_on_id}",
                            field_name="dependencies",
                            old_value=removed.depends_on_id,
                        )

        if removed is not None:
            self._logger.info(
                "dependency_removed",
                dependency_id=removed.id,
                task_id=task_id,
                depends_on_id=removed.depends_on_id,
            )
        return removed is not None

    async def list_dependencies(self, task_id: int) -> list[LinkedTask]:
        """Immediate predecessors of a task, ascending by task id."""
        async with self.session_factory() as session:
            await require_task(session, task_id)
            rows = await dependency_queries.list_predecessors(session, task_id)
        return [_link(dep, task) for dep, task in rows]

    async def list_dependents(self, task_id: int) -> list[LinkedTask]:
        """Immediate successors of a task, ascending by task id."""
        async with self.session_factory() as session:
            await require_task(session, task_id)
            rows = await dependency_queries.list_successors(session, task_id)
        return [_link(dep, task) for dep, task in rows]

    async def _chain(self, task_id: int, reverse: bool) -> list[Task]:
        async with self.session_factory() as session:
            await require_task(session, task_id)
            if reverse:
                ids = await dependency_queries.dependent_chain_ids(session, task_id)
            else:
                ids = await dependency_queries.dependency_chain_ids(session, task_id)
            if not ids:
                return []
            result = await session.execute(select(Task).where(Task.id.in_(ids)).order_by(Task.id))
            return list(result.scalars().all())

    async def dependency_chain(self, task_id: int) -> list[Task]:
        """All tasks transitively required by a task, ascending by id.

        Raises:
            NotFoundError: If the task does not exist.
        """
        return await self._chain(task_id, reverse=False)

    async def dependent_chain(self, task_id: int) -> list[Task]:
        """All tasks that transitively require a task, ascending by id.

        Raises:
            NotFoundError: If the task does not exist.
        """
        return await self._chain(task_id, reverse=True)

    async def can_start(self, task_id: int) -> bool:
        """Whether every immediate predecessor of a task is ready.

        Raises:
            NotFoundError: If the task does not exist.
            InvalidInputError: If an edge carries an unsupported kind.
        """
        async with self.session_factory() as session:
            await require_task(session, task_id)
            return await evaluate_can_start(session, task_id)

    async def project_graph(self, project_id: int) -> dict[str, Any]:
        """Nodes and intra-project edges of a project's dependency graph."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Task).where(Task.project_id == project_id).order_by(Task.id)
            )
            tasks = list(result.scalars().all())
            edges = await dependency_queries.project_edges(session, project_id)

        nodes = [
            {
                "id": task.id,
                "title": task.title,
                "status": task.status.value,
                "priority": task.priority.value,
                "parent_id": task.parent_id,
                "epic_id": task.epic_id,
                "assignee": task.assignee,
            }
            for task in tasks
        ]
        edge_list = [
            {
                "id": edge.id,
                "task_id": edge.task_id,
                "depends_on_id": edge.depends_on_id,
                "type": edge.type,
            }
            for edge in edges
        ]
        return {
            "nodes": nodes,
            "edges": edge_list,
            "stats": {"total_tasks": len(nodes), "total_dependencies": len(edge_list)},
        }

    async def blocking_summary(self, project_id: int) -> dict[int, DependencyCounts]:
        """Dependency counts per task, as consumed by board ordering."""
        async with self.session_factory() as session:
            return await summarize_project(session, project_id)


class InMemoryDependencyGraph:
    """Dependency graph held in memory.

    Answers the same reachability questions as the CTE queries, with the
    same ordering, using iterative breadth-first traversal so that large
    graphs never hit the recursion limit.
    """

    def __init__(self, edges: Iterable[tuple[int, int]] = ()) -> None:
        self._predecessors: dict[int, set[int]] = defaultdict(set)
        self._successors: dict[int, set[int]] = defaultdict(set)
        for task_id, depends_on_id in edges:
            self._predecessors[task_id].add(depends_on_id)
            self._successors[depends_on_id].add(task_id)

    @classmethod
    def from_rows(cls, rows: Iterable[TaskDependency]) -> InMemoryDependencyGraph:
        """Build a graph from TaskDependency rows."""
        return cls((row.task_id, row.depends_on_id) for row in rows)

    def __len__(self) -> int:
        return sum(len(targets) for targets in self._predecessors.values())

    @property
    def edges(self) -> list[tuple[int, int]]:
        """All ``(task_id, depends_on_id)`` pairs in ascending order."""
        return sorted(
            (task_id, depends_on_id)
            for task_id, targets in self._predecessors.items()
            for depends_on_id in targets
        )

    @staticmethod
    def _reach(adjacency: dict[int, set[int]], start: int) -> set[int]:
        seen: set[int] = set()
        queue = deque(adjacency.get(start, ()))
        while queue:
            node = queue.popleft()
            if node in seen:
                continue
            seen.add(node)
            queue.extend(n for n in adjacency.get(node, ()) if n not in seen)
        return seen

    def has_path(self, start: int, target: int) -> bool:
        """Whether ``target`` is a transitive predecessor of ``start``."""
        return target in self._reach(self._predecessors, start)

    def would_create_cycle(self, task_id: int, depends_on_id: int) -> bool:
        """Whether adding ``task_id -> depends_on_id`` closes a cycle."""
        return task_id == depends_on_id or self.has_path(depends_on_id, task_id)

    def add_edge(self, task_id: int, depends_on_id: int) -> None:
        """Add an edge with the same validation as the database engine.

        Raises:
            InvalidInputError: On self-dependency.
            DuplicateEntryError: If the edge exists.
            CircularDependencyError: If the edge would close a cycle.
        """
        if task_id == depends_on_id:
            raise InvalidInputError("A task cannot depend on itself", field="depends_on_id")
        if depends_on_id in self._predecessors.get(task_id, ()):
            raise DuplicateEntryError("Dependency already exists", field="depends_on_id")
        if self.has_path(depends_on_id, task_id):
            raise CircularDependencyError(
                "Adding this dependency would create a circular dependency",
                field="depends_on_id",
            )
        self._predecessors[task_id].add(depends_on_id)
        self._successors[depends_on_id].add(task_id)

    def remove_edge(self, task_id: int, depends_on_id: int) -> bool:
        """Remove an edge; returns whether it existed."""
        if depends_on_id not in self._predecessors.get(task_id, ()):
            return False
        self._predecessors[task_id].discard(depends_on_id)
        self._successors[depends_on_id].discard(task_id)
        return True

    def dependency_chain(self, task_id: int) -> list[int]:
        """Transitive predecessors of a task, ascending."""
        return sorted(self._reach(self._predecessors, task_id) - {task_id})

    def dependent_chain(self, task_id: int) -> list[int]:
        """Transitive successors of a task, ascending."""
        return sorted(self._reach(self._successors, task_id) - {task_id})
