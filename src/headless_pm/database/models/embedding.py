"""Embedding index model for Headless PM.

Stores one vector per (entity_type, entity_id) as a float32 blob. The
vector search itself happens in headless_pm.intelligence.index.
"""

from __future__ import annotations

import enum

from sqlalchemy import Integer, LargeBinary, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from headless_pm.database.models.base import Base, TimestampMixin


class EntityKind(enum.Enum):
    """Kinds of entity that carry an embedding."""

    project = "project"
    task = "task"
    document = "document"


class EmbeddingRecord(TimestampMixin, Base):
    """Vector embedding of one entity.

    Attributes:
        entity_type: Kind of the embedded entity.
        entity_id: Id of the embedded entity.
        project_id: Project the entity belongs to (for scoped search).
        model: Model that produced the vector.
        dimension: Vector length.
        vector: Little-endian float32 bytes.
        content_hash: sha256 of the embedded text, to skip unchanged content.
    """

    __tablename__ = "embeddings"
    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", name="uq_embedding_entity"),
    )

    entity_type: Mapped[EntityKind] = mapped_column(nullable=False, index=True)
    entity_id: Mapped[int] = mapped_column(Integer, nullable=False)
    project_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    model: Mapped[str] = mapped_column(String(255), nullable=False, default="all-MiniLM-L6-v2")
    dimension: Mapped[int] = mapped_column(Integer, nullable=False, default=384)
    vector: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    content_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
