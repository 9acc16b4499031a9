"""Embedding generation service for Headless PM.

Wraps the configured EmbeddingProvider, normalises every vector to unit
length with numpy, and builds the text that represents each entity:

- project: name, description and the titles of its tasks
- task: title, description and its comments

Example usage:
    >>> from headless_pm.intelligence.providers import LocalEmbeddingProvider
    >>> service = EmbeddingService(LocalEmbeddingProvider(dimension=8))
    >>> vector = await service.generate("Fix login redirect")
    >>> round(float(np.linalg.norm(vector)), 3)
    1.0
"""

from __future__ import annotations

import hashlib
import time
from dataclasses import dataclass

import numpy as np
import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from headless_pm.database.models.embedding import EntityKind
from headless_pm.database.models.project import Project
from headless_pm.database.models.task import Task
from headless_pm.database.queries.comment import comment_texts
from headless_pm.database.queries.project import project_task_titles
from headless_pm.errors import InvalidInputError
from headless_pm.intelligence.providers import EmbeddingProvider

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class EmbeddingDocument:
    """Text of one entity ready to be embedded.

    Attributes:
        kind: Entity kind.
        entity_id: Entity id.
        project_id: Project the entity belongs to.
        text: Text to embed.
    """

    kind: EntityKind
    entity_id: int
    project_id: int | None
    text: str

    @property
    def content_hash(self) -> str:
        """sha256 hex digest of the text."""
        return hashlib.sha256(self.text.encode()).hexdigest()


class EmbeddingService:
    """High-level embedding generation over one provider.

    Attributes:
        provider: Provider producing raw vectors
    """

    def __init__(self, provider: EmbeddingProvider) -> None:
        self.provider = provider
        logger.info(
            "embedding_service_initialized",
            model=provider.model_name,
            dimension=provider.dimension,
        )

    @property
    def model_name(self) -> str:
        return self.provider.model_name

    async def aclose(self) -> None:
        """Release the provider's HTTP client, if any."""
        await self.provider.aclose()

    @staticmethod
    def normalize(embedding: list[float] | np.ndarray) -> np.ndarray:
        """Normalize an embedding to a float32 unit vector.

        Zero vectors are returned unchanged.
        """
        arr = np.asarray(embedding, dtype=np.float32)
        norm = np.linalg.norm(arr)
        if norm == 0:
            logger.warning("embedding_zero_norm", embedding_dim=len(arr))
            return arr
        return arr / norm

    async def embed(self, texts: list[str]) -> list[np.ndarray]:
        """Embed a batch of texts.

        Raises:
            ProviderUnavailableError: If the provider call fails.
        """
        start_time = time.time()
        raw = await self.provider.embed(texts)
        vectors = [self.normalize(v) for v in raw]
        logger.debug(
            "embeddings_generated",
            batch_size=len(texts),
            model=self.provider.model_name,
            duration_seconds=round(time.time() - start_time, 3),
        )
        return vectors

    async def generate(self, text: str) -> np.ndarray:
        """Embed one text.

        Raises:
            InvalidInputError: If the text is empty or only whitespace.
            ProviderUnavailableError: If the provider call fails.
        """
        if not text or not text.strip():
            raise InvalidInputError("Cannot embed empty text", field="q")
        vectors = await self.embed([text])
        return vectors[0]

    async def build_document(
        self,
        session: AsyncSession,
        kind: EntityKind,
        entity_id: int,
    ) -> EmbeddingDocument | None:
        """Load an entity and render its embedding text.

        Returns:
            The document, or None when the entity no longer exists or the
            kind has no text source.
        """
        if kind == EntityKind.project:
            project = await session.get(Project, entity_id)
            if project is None:
                return None
            titles = await project_task_titles(session, entity_id)
            return EmbeddingDocument(kind, entity_id, entity_id, project.embedding_text(titles))

        if kind == EntityKind.task:
            task = await session.get(Task, entity_id)
            if task is None:
                return None
            comments = await comment_texts(session, entity_id)
            return EmbeddingDocument(kind, entity_id, task.project_id, task.embedding_text(comments))

        return None
