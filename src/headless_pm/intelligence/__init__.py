"""Semantic search subsystem for Headless PM.

This module manages embedding providers, the background embedding worker
and the vector index used by semantic search.
"""

from headless_pm.intelligence.embedding_worker import EmbeddingJob, EmbeddingWorker
from headless_pm.intelligence.embeddings import EmbeddingDocument, EmbeddingService
from headless_pm.intelligence.index import EmbeddingIndex, SearchHit
from headless_pm.intelligence.providers import (
    AzureOpenAIEmbeddingProvider,
    EmbeddingProvider,
    LocalEmbeddingProvider,
    OpenAIEmbeddingProvider,
    create_provider,
)

__all__ = [
    # Providers
    "EmbeddingProvider",
    "LocalEmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "AzureOpenAIEmbeddingProvider",
    "create_provider",
    # Embedding service
    "EmbeddingDocument",
    "EmbeddingService",
    # Index
    "EmbeddingIndex",
    "SearchHit",
    # Worker
    "EmbeddingJob",
    "EmbeddingWorker",
]
