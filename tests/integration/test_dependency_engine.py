"""Integration tests for the dependency engine against SQLite.

The recursive CTE reachability is cross-checked against
InMemoryDependencyGraph on randomly generated edge sets.
"""

from __future__ import annotations

import asyncio
import random

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from headless_pm.database.models.task import TaskDependency
from headless_pm.database.queries import dependency as dependency_queries
from headless_pm.database.queries.activity import Actor, list_task_activity
from headless_pm.database.queries.project import create_project
from headless_pm.database.queries.task import create_task, delete_task, update_task
from headless_pm.errors import (
    CircularDependencyError,
    DuplicateEntryError,
    HeadlessPMError,
    InvalidInputError,
    NotFoundError,
)
from headless_pm.graph.board import DependencyCounts
from headless_pm.graph.dependencies import DependencyEngine, InMemoryDependencyGraph


@pytest.fixture
def dependency_engine(session_factory: async_sessionmaker[AsyncSession]) -> DependencyEngine:
    return DependencyEngine(session_factory)


async def make_tasks(session: AsyncSession, project_id: int, count: int) -> list[int]:
    return [(await create_task(session, project_id, f"T{n}")).id for n in range(1, count + 1)]


@pytest.fixture
async def project_id(db_session: AsyncSession) -> int:
    return (await create_project(db_session, name="Alpha")).id


class TestAddDependency:
    """Validation performed before an edge is stored."""

    @pytest.mark.asyncio
    async def test_add(
        self, db_session: AsyncSession, project_id: int, dependency_engine: DependencyEngine
    ) -> None:
        t1, t2 = await make_tasks(db_session, project_id, 2)
        actor = Actor(user_id=0, name="token:ci")
        dependency = await dependency_engine.add_dependency(t2, t1, actor=actor)

        assert dependency.id is not None
        assert dependency.task_id == t2
        assert dependency.depends_on_id == t1
        assert dependency.type == "finish_to_start"

        latest = (await list_task_activity(db_session, t2))[0]
        assert latest.action == "dependency_added"
        assert latest.user_name == "token:ci"

    @pytest.mark.asyncio
    async def test_self_dependency(
        self, db_session: AsyncSession, project_id: int, dependency_engine: DependencyEngine
    ) -> None:
        [t1] = await make_tasks(db_session, project_id, 1)
        with pytest.raises(InvalidInputError):
            await dependency_engine.add_dependency(t1, t1)

    @pytest.mark.asyncio
    async def test_duplicate(
        self, db_session: AsyncSession, project_id: int, dependency_engine: DependencyEngine
    ) -> None:
        t1, t2 = await make_tasks(db_session, project_id, 2)
        await dependency_engine.add_dependency(t2, t1)
        with pytest.raises(DuplicateEntryError):
            await dependency_engine.add_dependency(t2, t1)

    @pytest.mark.asyncio
    async def test_direct_cycle(
        self, db_session: AsyncSession, project_id: int, dependency_engine: DependencyEngine
    ) -> None:
        t1, t2 = await make_tasks(db_session, project_id, 2)
        await dependency_engine.add_dependency(t2, t1)
        with pytest.raises(CircularDependencyError):
            await dependency_engine.add_dependency(t1, t2)
        assert len(await dependency_engine.list_dependencies(t2)) == 1
        assert await dependency_engine.list_dependencies(t1) == []

    @pytest.mark.asyncio
    async def test_transitive_cycle(
        self, db_session: AsyncSession, project_id: int, dependency_engine: DependencyEngine
    ) -> None:
        t1, t2, t3 = await make_tasks(db_session, project_id, 3)
        await dependency_engine.add_dependency(t2, t1)
        await dependency_engine.add_dependency(t3, t2)
        with pytest.raises(CircularDependencyError):
            await dependency_engine.add_dependency(t1, t3)

    @pytest.mark.asyncio
    async def test_cross_project(
        self, db_session: AsyncSession, project_id: int, dependency_engine: DependencyEngine
    ) -> None:
        [t1] = await make_tasks(db_session, project_id, 1)
        other = await create_project(db_session, name="Beta")
        foreign = await create_task(db_session, other.id, "Foreign")
        with pytest.raises(InvalidInputError):
            await dependency_engine.add_dependency(t1, foreign.id)

    @pytest.mark.asyncio
    async def test_missing_tasks(
        self, db_session: AsyncSession, project_id: int, dependency_engine: DependencyEngine
    ) -> None:
        [t1] = await make_tasks(db_session, project_id, 1)
        with pytest.raises(NotFoundError):
            await dependency_engine.add_dependency(999, t1)
        with pytest.raises(NotFoundError):
            await dependency_engine.add_dependency(t1, 999)

    @pytest.mark.asyncio
    async def test_unsupported_kind(
        self, db_session: AsyncSession, project_id: int, dependency_engine: DependencyEngine
    ) -> None:
        t1, t2 = await make_tasks(db_session, project_id, 2)
        with pytest.raises(InvalidInputError):
            await dependency_engine.add_dependency(t2, t1, kind="finish_to_finish")

    @pytest.mark.asyncio
    async def test_concurrent_opposite_edges(
        self, db_session: AsyncSession, project_id: int, dependency_engine: DependencyEngine
    ) -> None:
        """Only one of two racing edges that together form a cycle is stored."""
        t1, t2 = await make_tasks(db_session, project_id, 2)
        results = await asyncio.gather(
            dependency_engine.add_dependency(t2, t1),
            dependency_engine.add_dependency(t1, t2),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, Exception)]
        stored = [r for r in results if isinstance(r, TaskDependency)]
        assert len(stored) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], CircularDependencyError)

        edges = await dependency_queries.project_edges(db_session, project_id)
        assert len(edges) == 1


class TestRemoveDependency:
    @pytest.mark.asyncio
    async def test_remove_by_row_id(
        self, db_session: AsyncSession, project_id: int, dependency_engine: DependencyEngine
    ) -> None:
        t1, t2 = await make_tasks(db_session, project_id, 2)
        dependency = await dependency_engine.add_dependency(t2, t1)
        assert await dependency_engine.remove_dependency(t2, dependency.id) is True
        assert await dependency_engine.list_dependencies(t2) == []
        assert (await list_task_activity(db_session, t2))[0].action == "dependency_removed"

    @pytest.mark.asyncio
    async def test_remove_by_predecessor_id(
        self, db_session: AsyncSession, project_id: int, dependency_engine: DependencyEngine
    ) -> None:
        tasks = await make_tasks(db_session, project_id, 6)
        # Row id 1 belongs to another task's edge, so t6 -> t5 is matched by predecessor
        await dependency_engine.add_dependency(tasks[1], tasks[0])
        await dependency_engine.add_dependency(tasks[5], tasks[4])
        assert await dependency_engine.remove_dependency(tasks[5], tasks[4]) is True
        assert await dependency_engine.list_dependencies(tasks[5]) == []
        assert len(await dependency_engine.list_dependencies(tasks[1])) == 1

    @pytest.mark.asyncio
    async def test_remove_is_idempotent(
        self, db_session: AsyncSession, project_id: int, dependency_engine: DependencyEngine
    ) -> None:
        t1, t2 = await make_tasks(db_session, project_id, 2)
        dependency = await dependency_engine.add_dependency(t2, t1)
        await dependency_engine.remove_dependency(t2, dependency.id)
        assert await dependency_engine.remove_dependency(t2, dependency.id) is False

    @pytest.mark.asyncio
    async def test_remove_unknown_task(self, dependency_engine: DependencyEngine) -> None:
        with pytest.raises(NotFoundError):
            await dependency_engine.remove_dependency(999, 1)


class TestQueries:
    """Chains, immediate neighbours and readiness."""

    @pytest.mark.asyncio
    async def test_chains(
        self, db_session: AsyncSession, project_id: int, dependency_engine: DependencyEngine
    ) -> None:
        t1, t2, t3 = await make_tasks(db_session, project_id, 3)
        await dependency_engine.add_dependency(t2, t1)
        await dependency_engine.add_dependency(t3, t2)

        assert [t.id for t in await dependency_engine.dependency_chain(t3)] == [t1, t2]
        assert [t.id for t in await dependency_engine.dependent_chain(t1)] == [t2, t3]
        assert await dependency_engine.dependency_chain(t1) == []
        assert await dependency_engine.dependent_chain(t3) == []

    @pytest.mark.asyncio
    async def test_diamond_chain_has_no_duplicates(
        self, db_session: AsyncSession, project_id: int, dependency_engine: DependencyEngine
    ) -> None:
        top, left, right, bottom = await make_tasks(db_session, project_id, 4)
        await dependency_engine.add_dependency(left, top)
        await dependency_engine.add_dependency(right, top)
        await dependency_engine.add_dependency(bottom, left)
        await dependency_engine.add_dependency(bottom, right)

        chain = [t.id for t in await dependency_engine.dependency_chain(bottom)]
        assert chain == [top, left, right]

    @pytest.mark.asyncio
    async def test_immediate_neighbours(
        self, db_session: AsyncSession, project_id: int, dependency_engine: DependencyEngine
    ) -> None:
        t1, t2, t3 = await make_tasks(db_session, project_id, 3)
        await dependency_engine.add_dependency(t3, t2, kind="start_to_start")
        await dependency_engine.add_dependency(t3, t1)

        dependencies = await dependency_engine.list_dependencies(t3)
        assert [d.task_id for d in dependencies] == [t1, t2]
        assert [d.type for d in dependencies] == ["finish_to_start", "start_to_start"]
        assert dependencies[0].title == "T1"
        assert dependencies[0].status == "todo"

        dependents = await dependency_engine.list_dependents(t1)
        assert [d.task_id for d in dependents] == [t3]

    @pytest.mark.asyncio
    async def test_missing_task(self, dependency_engine: DependencyEngine) -> None:
        with pytest.raises(NotFoundError):
            await dependency_engine.list_dependencies(999)
        with pytest.raises(NotFoundError):
            await dependency_engine.dependency_chain(999)
        with pytest.raises(NotFoundError):
            await dependency_engine.can_start(999)

    @pytest.mark.asyncio
    async def test_can_start_finish_to_start(
        self, db_session: AsyncSession, project_id: int, dependency_engine: DependencyEngine
    ) -> None:
        t1, t2 = await make_tasks(db_session, project_id, 2)
        await dependency_engine.add_dependency(t2, t1)

        assert await dependency_engine.can_start(t1) is True
        assert await dependency_engine.can_start(t2) is False
        await update_task(db_session, t1, {"status": "in_progress"})
        assert await dependency_engine.can_start(t2) is False
        await update_task(db_session, t1, {"status": "done"})
        assert await dependency_engine.can_start(t2) is True

    @pytest.mark.asyncio
    async def test_can_start_start_to_start(
        self, db_session: AsyncSession, project_id: int, dependency_engine: DependencyEngine
    ) -> None:
        t1, t2 = await make_tasks(db_session, project_id, 2)
        await dependency_engine.add_dependency(t2, t1, kind="start_to_start")

        assert await dependency_engine.can_start(t2) is False
        await update_task(db_session, t1, {"status": "in_progress"})
        assert await dependency_engine.can_start(t2) is True

    @pytest.mark.asyncio
    async def test_can_start_ignores_indirect_predecessors(
        self, db_session: AsyncSession, project_id: int, dependency_engine: DependencyEngine
    ) -> None:
        t1, t2, t3 = await make_tasks(db_session, project_id, 3)
        await dependency_engine.add_dependency(t2, t1)
        await dependency_engine.add_dependency(t3, t2)
        await update_task(db_session, t2, {"status": "done"})
        assert await dependency_engine.can_start(t3) is True

    @pytest.mark.asyncio
    async def test_can_start_unknown_stored_kind(
        self, db_session: AsyncSession, project_id: int, dependency_engine: DependencyEngine
    ) -> None:
        t1, t2 = await make_tasks(db_session, project_id, 2)
        db_session.add(TaskDependency(task_id=t2, depends_on_id=t1, type="finish_to_finish"))
        await db_session.commit()
        with pytest.raises(InvalidInputError):
            await dependency_engine.can_start(t2)


class TestProjectViews:
    @pytest.mark.asyncio
    async def test_project_graph(
        self, db_session: AsyncSession, project_id: int, dependency_engine: DependencyEngine
    ) -> None:
        t1, t2, t3 = await make_tasks(db_session, project_id, 3)
        dependency = await dependency_engine.add_dependency(t2, t1)

        graph = await dependency_engine.project_graph(project_id)
        assert [n["id"] for n in graph["nodes"]] == [t1, t2, t3]
        assert graph["edges"] == [
            {"id": dependency.id, "task_id": t2, "depends_on_id": t1, "type": "finish_to_start"}
        ]
        assert graph["stats"] == {"total_tasks": 3, "total_dependencies": 1}

    @pytest.mark.asyncio
    async def test_blocking_summary(
        self, db_session: AsyncSession, project_id: int, dependency_engine: DependencyEngine
    ) -> None:
        t1, t2, t3, t4 = await make_tasks(db_session, project_id, 4)
        await dependency_engine.add_dependency(t3, t1)
        await dependency_engine.add_dependency(t3, t2)
        await dependency_engine.add_dependency(t4, t1)
        await update_task(db_session, t2, {"status": "cancelled"})

        summary = await dependency_engine.blocking_summary(project_id)
        assert summary[t1] == DependencyCounts(predecessors=0, remaining=0, dependents=2)
        assert summary[t3] == DependencyCounts(predecessors=2, remaining=1, dependents=0)
        assert summary[t4] == DependencyCounts(predecessors=1, remaining=1, dependents=0)

    @pytest.mark.asyncio
    async def test_task_delete_removes_edges(
        self, db_session: AsyncSession, project_id: int, dependency_engine: DependencyEngine
    ) -> None:
        t1, t2, t3 = await make_tasks(db_session, project_id, 3)
        await dependency_engine.add_dependency(t2, t1)
        await dependency_engine.add_dependency(t3, t2)

        await delete_task(db_session, t2)

        assert await dependency_engine.list_dependents(t1) == []
        assert await dependency_engine.list_dependencies(t3) == []
        assert await dependency_engine.can_start(t3) is True


class TestMatchesInMemoryGraph:
    """The SQL engine and the in-memory graph agree on every decision."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("seed", [3, 11])
    async def test_random_edges(
        self,
        db_session: AsyncSession,
        project_id: int,
        dependency_engine: DependencyEngine,
        seed: int,
    ) -> None:
        rng = random.Random(seed)
        ids = await make_tasks(db_session, project_id, 10)
        graph = InMemoryDependencyGraph()

        for _ in range(40):
            task_id, depends_on_id = rng.choice(ids), rng.choice(ids)
            expected: type[HeadlessPMError] | None = None
            try:
                graph.add_edge(task_id, depends_on_id)
            except HeadlessPMError as exc:
                expected = type(exc)

            if expected is None:
                await dependency_engine.add_dependency(task_id, depends_on_id)
            else:
                with pytest.raises(expected):
                    await dependency_engine.add_dependency(task_id, depends_on_id)

        rows = await dependency_queries.project_edges(db_session, project_id)
        assert InMemoryDependencyGraph.from_rows(rows).edges == graph.edges
        for task_id in ids:
            assert [t.id for t in await dependency_engine.dependency_chain(task_id)] == (
                graph.dependency_chain(task_id)
            )
            assert [t.id for t in await dependency_engine.dependent_chain(task_id)] == (
                graph.dependent_chain(task_id)
            )
