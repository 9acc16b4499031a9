"""FastAPI dependencies shared by the route modules.

Application-wide services are created in the lifespan (or by tests) and
stored on ``app.state``; these helpers hand them to route handlers.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from headless_pm.database.models.embedding import EntityKind
from headless_pm.logging import get_logger

if TYPE_CHECKING:
    from headless_pm.config import HeadlessPMConfig
    from headless_pm.graph.dependencies import DependencyEngine
    from headless_pm.intelligence.embedding_worker import EmbeddingWorker
    from headless_pm.intelligence.embeddings import EmbeddingService
    from headless_pm.intelligence.index import EmbeddingIndex
    from headless_pm.storage import AttachmentStorage

logger = get_logger(__name__)


def get_session_factory(request: Request) -> Callable[[], AsyncSession]:
    """Extract session factory from FastAPI app state.

    Args:
        request: Incoming FastAPI request.

    Returns:
        Callable that produces AsyncSession instances.
    """
    return request.app.state.session_factory


def get_config(request: Request) -> HeadlessPMConfig:
    return request.app.state.config


def get_dependency_engine(request: Request) -> DependencyEngine:
    return request.app.state.dependency_engine


def get_storage(request: Request) -> AttachmentStorage:
    return request.app.state.storage


def get_embedding_service(request: Request) -> EmbeddingService | None:
    return getattr(request.app.state, "embedding_service", None)


def get_embedding_index(request: Request) -> EmbeddingIndex:
    return request.app.state.embedding_index


def get_embedding_worker(request: Request) -> EmbeddingWorker | None:
    return getattr(request.app.state, "embedding_worker", None)


def get_max_depth(request: Request) -> int:
    """Configured subtask depth limit."""
    return request.app.state.config.database.max_delete_depth


def queue_embeddings(request: Request, *jobs: tuple[EntityKind, int | None]) -> None:
    """Queue embedding jobs after a committed mutation.

    Does nothing when the worker is disabled. Jobs with a None id are
    skipped.
    """
    worker = get_embedding_worker(request)
    if worker is None:
        return
    for kind, entity_id in jobs:
        if entity_id is not None:
            worker.queue_job(kind, entity_id)
