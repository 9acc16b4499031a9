"""Unit tests for the embedding service.

Tests cover:
- Vector normalisation (including zero vectors)
- Empty text handling
- Batch embedding through a mocked provider
- Document content hashing
"""

from __future__ import annotations

import hashlib
from unittest.mock import AsyncMock, MagicMock

import numpy as np
import pytest

from headless_pm.database.models.embedding import EntityKind
from headless_pm.errors import InvalidInputError, ProviderUnavailableError
from headless_pm.intelligence.embeddings import EmbeddingDocument, EmbeddingService
from headless_pm.intelligence.providers import LocalEmbeddingProvider


@pytest.fixture
def mock_provider() -> MagicMock:
    provider = MagicMock()
    provider.model_name = "mock-model"
    provider.dimension = 2
    provider.embed = AsyncMock(return_value=[[3.0, 4.0]])
    provider.aclose = AsyncMock()
    return provider


class TestNormalize:
    def test_unit_length(self) -> None:
        vector = EmbeddingService.normalize([3.0, 4.0])
        assert vector.dtype == np.float32
        np.testing.assert_allclose(vector, [0.6, 0.8], rtol=1e-6)

    def test_zero_vector_unchanged(self) -> None:
        vector = EmbeddingService.normalize([0.0, 0.0, 0.0])
        assert not vector.any()


class TestEmbeddingService:
    """Generation over a provider."""

    @pytest.mark.asyncio
    async def test_generate_normalises(self, mock_provider: MagicMock) -> None:
        service = EmbeddingService(mock_provider)
        vector = await service.generate("Fix login redirect")
        mock_provider.embed.assert_awaited_once_with(["Fix login redirect"])
        np.testing.assert_allclose(vector, [0.6, 0.8], rtol=1e-6)
        assert service.model_name == "mock-model"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    async def test_generate_rejects_empty_text(self, mock_provider: MagicMock, text: str) -> None:
        service = EmbeddingService(mock_provider)
        with pytest.raises(InvalidInputError):
            await service.generate(text)
        mock_provider.embed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_provider_failure_propagates(self, mock_provider: MagicMock) -> None:
        mock_provider.embed.side_effect = ProviderUnavailableError("down")
        service = EmbeddingService(mock_provider)
        with pytest.raises(ProviderUnavailableError):
            await service.generate("text")

    @pytest.mark.asyncio
    async def test_embed_batch(self) -> None:
        service = EmbeddingService(LocalEmbeddingProvider(dimension=8))
        vectors = await service.embed(["one", "two", "three"])
        assert len(vectors) == 3
        for vector in vectors:
            assert vector.shape == (8,)
            assert float(np.linalg.norm(vector)) == pytest.approx(1.0, abs=1e-5)

    @pytest.mark.asyncio
    async def test_aclose_releases_provider(self, mock_provider: MagicMock) -> None:
        await EmbeddingService(mock_provider).aclose()
        mock_provider.aclose.assert_awaited_once()


def test_document_content_hash() -> None:
    document = EmbeddingDocument(EntityKind.task, 1, 1, "Design schema")
    assert document.content_hash == hashlib.sha256(b"Design schema").hexdigest()
