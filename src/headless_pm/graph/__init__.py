"""Dependency graph and board ordering for Headless PM."""

from headless_pm.graph.board import (
    BOARD_COLUMNS,
    DependencyCounts,
    board_sort_key,
    is_archived,
    order_board,
)
from headless_pm.graph.dependencies import (
    DependencyEngine,
    InMemoryDependencyGraph,
    LinkedTask,
    can_start_map,
    evaluate_can_start,
    parse_dependency_type,
    predecessor_ready,
    summarize_project,
)

__all__ = [
    "BOARD_COLUMNS",
    "DependencyCounts",
    "DependencyEngine",
    "InMemoryDependencyGraph",
    "LinkedTask",
    "board_sort_key",
    "can_start_map",
    "evaluate_can_start",
    "is_archived",
    "order_board",
    "parse_dependency_type",
    "predecessor_ready",
    "summarize_project",
]
