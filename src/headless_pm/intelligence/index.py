"""Vector index over stored embeddings.

Vectors are persisted as little-endian float32 blobs in the
``embeddings`` table, one row per (entity kind, entity id). Search loads
the candidate vectors for one kind and ranks them by cosine similarity
with numpy.

Example usage:
    >>> index = EmbeddingIndex(session_factory)
    >>> await index.index_entity(EntityKind.task, 7, vector, model="local-hash", project_id=1)
    >>> hits = await index.search(EntityKind.task, query_vector, limit=5)
    >>> hits[0].entity_id
    7
"""

from __future__ import annotations

from typing import Callable

import numpy as np
import structlog
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from headless_pm.database.models.embedding import EntityKind
from headless_pm.database.queries.embedding import (
    delete_embedding,
    get_embedding,
    list_embeddings,
    upsert_embedding,
)

logger = structlog.get_logger(__name__)

SessionFactory = Callable[[], AsyncSession]

VECTOR_DTYPE = np.dtype("<f4")


class SearchHit(BaseModel):
    """One ranked search result.

    Attributes:
        kind: Entity kind.
        entity_id: Entity id.
        project_id: Project of the entity.
        score: Cosine similarity in [-1, 1].
    """

    kind: EntityKind
    entity_id: int
    project_id: int | None = None
    score: float = Field(ge=-1.0, le=1.0)


def vector_to_bytes(vector: list[float] | np.ndarray) -> bytes:
    """Serialize a vector as float32 bytes."""
    return np.asarray(vector, dtype=VECTOR_DTYPE).tobytes()


def bytes_to_vector(blob: bytes) -> np.ndarray:
    """Deserialize float32 bytes into a vector."""
    return np.frombuffer(blob, dtype=VECTOR_DTYPE)


class EmbeddingIndex:
    """Persistent vector index with cosine-similarity search.

    Attributes:
        session_factory: Callable that produces async database sessions.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self.session_factory = session_factory

    async def index_entity(
        self,
        kind: EntityKind,
        entity_id: int,
        vector: list[float] | np.ndarray,
        model: str,
        project_id: int | None = None,
        content_hash: str | None = None,
    ) -> None:
        """Insert or replace the vector of one entity."""
        arr = np.asarray(vector, dtype=VECTOR_DTYPE)
        async with self.session_factory() as session:
            await upsert_embedding(
                session,
                kind,
                entity_id,
                vector_to_bytes(arr),
                model=model,
                dimension=int(arr.shape[0]),
                project_id=project_id,
                content_hash=content_hash,
            )

    async def remove(self, kind: EntityKind, entity_id: int) -> bool:
        """Remove one entity from the index; returns whether it was present."""
        async with self.session_factory() as session:
            removed = await delete_embedding(session, kind, entity_id)
        if removed:
            logger.debug("embedding_removed", entity_type=kind.value, entity_id=entity_id)
        return removed

    async def get_vector(self, kind: EntityKind, entity_id: int) -> np.ndarray | None:
        """Stored vector of one entity, if any."""
        async with self.session_factory() as session:
            record = await get_embedding(session, kind, entity_id)
        return bytes_to_vector(record.vector) if record is not None else None

    async def search(
        self,
        kind: EntityKind,
        query_vector: list[float] | np.ndarray,
        limit: int = 10,
        project_id: int | None = None,
    ) -> list[SearchHit]:
        """Rank indexed entities of one kind by similarity to a query vector.

        Vectors whose dimension differs from the query's (for example after
        switching providers) are skipped.

        Args:
            kind: Entity kind to search.
            query_vector: Query embedding.
            limit: Maximum number of hits.
            project_id: Restrict to entities of one project.

        Returns:
            Hits ordered by descending score, ties by ascending entity id.
        """
        query = np.asarray(query_vector, dtype=np.float32)
        async with self.session_factory() as session:
            records = await list_embeddings(session, kind, project_id)

        candidates = [r for r in records if r.dimension == query.shape[0]]
        if not candidates or limit <= 0:
            return []

        matrix = np.vstack([bytes_to_vector(r.vector) for r in candidates]).astype(np.float32)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        dots = matrix @ query
        scores = np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)
        scores = np.clip(scores, -1.0, 1.0)

        ranked = sorted(
            zip(candidates, scores.tolist()),
            key=lambda pair: (-pair[1], pair[0].entity_id),
        )
        hits = [
            SearchHit(kind=kind, entity_id=r.entity_id, project_id=r.project_id, score=score)
            for r, score in ranked[:limit]
        ]
        logger.debug("embedding_search", entity_type=kind.value, candidates=len(candidates), hits=len(hits))
        return hits
