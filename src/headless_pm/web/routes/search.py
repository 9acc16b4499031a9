"""Semantic search endpoint for Headless PM.

Embeds the query with the configured provider and ranks indexed entities
by cosine similarity. Results reflect the index, which the embedding
worker updates some time after each write.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from headless_pm.database.models.embedding import EntityKind
from headless_pm.errors import InvalidInputError, ProviderUnavailableError
from headless_pm.intelligence.embeddings import EmbeddingService
from headless_pm.intelligence.index import EmbeddingIndex, SearchHit
from headless_pm.logging import get_logger
from headless_pm.web.auth import require_scopes
from headless_pm.web.dependencies import get_embedding_index, get_embedding_service

logger = get_logger(__name__)

SEARCHABLE_KINDS = (EntityKind.task, EntityKind.project)


class SearchResponse(BaseModel):
    query: str
    type: EntityKind
    results: list[SearchHit]


def parse_search_kind(value: str) -> EntityKind:
    """Coerce a ``type`` parameter into a searchable EntityKind.

    Raises:
        InvalidInputError: For unknown or non-searchable kinds.
    """
    try:
        kind = EntityKind(value)
    except ValueError:
        kind = None
    if kind not in SEARCHABLE_KINDS:
        raise InvalidInputError(f"Invalid search type: {value}", field="type")
    return kind


async def semantic_search(
    service: EmbeddingService | None,
    index: EmbeddingIndex,
    query: str,
    kind: str = "task",
    project_id: int | None = None,
    limit: int = 10,
) -> dict[str, Any]:
    """Run one semantic search; shared by the REST route and the MCP tool.

    Raises:
        InvalidInputError: On a blank query or unknown type.
        ProviderUnavailableError: If embeddings are disabled or the provider fails.
    """
    entity_kind = parse_search_kind(kind)
    if service is None:
        raise ProviderUnavailableError("Semantic search is not available")
    vector = await service.generate(query)
    hits = await index.search(entity_kind, vector, limit=limit, project_id=project_id)
    logger.info("semantic_search", type=entity_kind.value, project_id=project_id, hits=len(hits))
    return {"query": query, "type": entity_kind, "results": hits}


def create_search_router() -> APIRouter:
    """Create search router.

    Routes:
        GET /api/search?q=&type=task|project&project_id=&limit=
    """
    router = APIRouter(prefix="/api/search", tags=["search"])

    @router.get("", response_model=SearchResponse, dependencies=[Depends(require_scopes("read"))])
    async def search(
        q: str = Query(..., min_length=1),
        type: str = "task",
        project_id: int | None = None,
        limit: int = Query(default=10, ge=1, le=100),
        service: EmbeddingService | None = Depends(get_embedding_service),  # noqa: B008
        index: EmbeddingIndex = Depends(get_embedding_index),  # noqa: B008
    ) -> dict[str, Any]:
        return await semantic_search(service, index, q, type, project_id, limit)

    return router
