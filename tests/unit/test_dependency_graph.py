"""Unit tests for the in-memory dependency graph and readiness rules."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from headless_pm.database.models.task import DependencyType, TaskStatus
from headless_pm.errors import CircularDependencyError, DuplicateEntryError, InvalidInputError
from headless_pm.graph.dependencies import (
    InMemoryDependencyGraph,
    parse_dependency_type,
    predecessor_ready,
)


class TestParseDependencyType:
    def test_default_is_finish_to_start(self) -> None:
        assert parse_dependency_type(None) == DependencyType.finish_to_start
        assert parse_dependency_type("") == DependencyType.finish_to_start

    def test_start_to_start(self) -> None:
        assert parse_dependency_type("start_to_start") == DependencyType.start_to_start

    def test_unknown_kind_rejected(self) -> None:
        with pytest.raises(InvalidInputError) as exc_info:
            parse_dependency_type("finish_to_finish")
        assert exc_info.value.field == "type"


class TestPredecessorReady:
    """Readiness of a single edge."""

    @pytest.mark.parametrize(
        ("status", "ready"),
        [
            (TaskStatus.todo, False),
            (TaskStatus.in_progress, False),
            (TaskStatus.review, False),
            (TaskStatus.done, True),
            (TaskStatus.cancelled, False),
        ],
    )
    def test_finish_to_start(self, status: TaskStatus, ready: bool) -> None:
        assert predecessor_ready("finish_to_start", status) is ready

    @pytest.mark.parametrize(
        ("status", "ready"),
        [
            (TaskStatus.todo, False),
            (TaskStatus.in_progress, True),
            (TaskStatus.review, True),
            (TaskStatus.done, True),
        ],
    )
    def test_start_to_start(self, status: TaskStatus, ready: bool) -> None:
        assert predecessor_ready("start_to_start", status) is ready

    def test_unknown_stored_kind(self) -> None:
        with pytest.raises(InvalidInputError):
            predecessor_ready("bogus", TaskStatus.done)


class TestInMemoryDependencyGraph:
    """Reachability and validation over an edge list."""

    @pytest.fixture
    def chain(self) -> InMemoryDependencyGraph:
        """3 depends on 2, 2 depends on 1."""
        return InMemoryDependencyGraph([(2, 1), (3, 2)])

    def test_edges_sorted(self, chain: InMemoryDependencyGraph) -> None:
        assert chain.edges == [(2, 1), (3, 2)]
        assert len(chain) == 2

    def test_from_rows(self) -> None:
        rows = [SimpleNamespace(task_id=2, depends_on_id=1)]
        assert InMemoryDependencyGraph.from_rows(rows).edges == [(2, 1)]

    def test_has_path(self, chain: InMemoryDependencyGraph) -> None:
        assert chain.has_path(3, 1) is True
        assert chain.has_path(1, 3) is False

    def test_chains(self, chain: InMemoryDependencyGraph) -> None:
        assert chain.dependency_chain(3) == [1, 2]
        assert chain.dependent_chain(1) == [2, 3]
        assert chain.dependency_chain(1) == []

    def test_self_edge_rejected(self, chain: InMemoryDependencyGraph) -> None:
        with pytest.raises(InvalidInputError):
            chain.add_edge(1, 1)

    def test_duplicate_rejected(self, chain: InMemoryDependencyGraph) -> None:
        with pytest.raises(DuplicateEntryError):
            chain.add_edge(2, 1)

    def test_cycle_rejected(self, chain: InMemoryDependencyGraph) -> None:
        assert chain.would_create_cycle(1, 3) is True
        with pytest.raises(CircularDependencyError):
            chain.add_edge(1, 3)
        assert len(chain) == 2

    def test_add_and_remove(self, chain: InMemoryDependencyGraph) -> None:
        chain.add_edge(4, 1)
        assert chain.dependent_chain(1) == [2, 3, 4]
        assert chain.remove_edge(4, 1) is True
        assert chain.remove_edge(4, 1) is False
        assert chain.dependent_chain(1) == [2, 3]

    def test_diamond_counted_once(self) -> None:
        graph = InMemoryDependencyGraph([(2, 1), (3, 1), (4, 2), (4, 3)])
        assert graph.dependency_chain(4) == [1, 2, 3]
        assert graph.dependent_chain(1) == [2, 3, 4]

    def test_long_chain_has_no_recursion_limit(self) -> None:
        graph = InMemoryDependencyGraph((i + 1, i) for i in range(1, 5000))
        assert graph.has_path(5000, 1) is True
        assert graph.would_create_cycle(1, 5000) is True
        assert len(graph.dependency_chain(5000)) == 4999

    def test_acyclic_after_random_adds(self) -> None:
        """Whatever sequence is attempted, accepted edges never form a cycle."""
        graph = InMemoryDependencyGraph()
        attempts = [(a, b) for a in range(1, 8) for b in range(1, 8)]
        for task_id, depends_on_id in attempts:
            try:
                graph.add_edge(task_id, depends_on_id)
            except (InvalidInputError, DuplicateEntryError, CircularDependencyError):
                continue
        for task_id, depends_on_id in graph.edges:
            assert not graph.has_path(depends_on_id, task_id)
