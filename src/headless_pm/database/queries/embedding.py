"""Embedding record query functions for Headless PM.

Vectors cross this layer as raw float32 bytes; conversion to numpy
arrays happens in headless_pm.intelligence.index.
"""

from __future__ import annotations

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from headless_pm.database.connection import transaction
from headless_pm.database.models.embedding import EmbeddingRecord, EntityKind

logger = structlog.get_logger(__name__)


async def get_embedding(
    session: AsyncSession,
    kind: EntityKind,
    entity_id: int,
) -> EmbeddingRecord | None:
    """Retrieve the embedding of one entity."""
    result = await session.execute(
        select(EmbeddingRecord).where(
            EmbeddingRecord.entity_type == kind,
            EmbeddingRecord.entity_id == entity_id,
        )
    )
    return result.scalar_one_or_none()


async def upsert_embedding(
    session: AsyncSession,
    kind: EntityKind,
    entity_id: int,
    vector: bytes,
    model: str,
    dimension: int,
    project_id: int | None = None,
    content_hash: str | None = None,
) -> EmbeddingRecord:
    """Insert or replace the embedding of one entity.

    Args:
        session: Active async database session.
        kind: Entity kind.
        entity_id: Entity id.
        vector: float32 bytes of length ``dimension * 4``.
        model: Model that produced the vector.
        dimension: Vector length.
        project_id: Project the entity belongs to.
        content_hash: Digest of the embedded text.

    Returns:
        The stored EmbeddingRecord.
    """
    async with transaction(session):
        record = await get_embedding(session, kind, entity_id)
        if record is None:
            record = EmbeddingRecord(entity_type=kind, entity_id=entity_id)
            session.add(record)
        record.vector = vector
        record.model = model
        record.dimension = dimension
        record.project_id = project_id
        record.content_hash = content_hash
        await session.flush()

    logger.debug("embedding_stored", entity_type=kind.value, entity_id=entity_id, dimension=dimension)
    return record


async def delete_embedding(session: AsyncSession, kind: EntityKind, entity_id: int) -> bool:
    """Delete the embedding of one entity; returns whether a row existed."""
    async with transaction(session):
        result = await session.execute(
            delete(EmbeddingRecord).where(
                EmbeddingRecord.entity_type == kind,
                EmbeddingRecord.entity_id == entity_id,
            )
        )
    return bool(result.rowcount)


async def list_embeddings(
    session: AsyncSession,
    kind: EntityKind,
    project_id: int | None = None,
) -> list[EmbeddingRecord]:
    """List embeddings of one kind, optionally scoped to a project."""
    stmt = select(EmbeddingRecord).where(EmbeddingRecord.entity_type == kind)
    if project_id is not None:
        stmt = stmt.where(EmbeddingRecord.project_id == project_id)
    result = await session.execute(stmt.order_by(EmbeddingRecord.entity_id))
    return list(result.scalars().all())
