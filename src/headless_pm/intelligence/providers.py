"""Embedding providers for Headless PM.

A provider turns a batch of texts into vectors. Three implementations
are available:
- local: deterministic hash-based vectors, no network access
- openai: OpenAI embeddings API
- azure_openai: Azure OpenAI embedding deployment

Remote providers use an httpx AsyncClient with the configured timeout
(30 seconds by default). Transport failures and non-2xx responses are
raised as ProviderUnavailableError so that callers can retry.

Example usage:
    >>> from headless_pm.config import EmbeddingConfig
    >>> provider = create_provider(EmbeddingConfig(provider="local", dimension=8))
    >>> vectors = await provider.embed(["Write migration script"])
    >>> len(vectors[0])
    8
    >>> await provider.aclose()
"""

from __future__ import annotations

import math
from typing import Any, Protocol, runtime_checkable

import httpx
import structlog

from headless_pm.config import EmbeddingConfig
from headless_pm.errors import InvalidInputError, ProviderUnavailableError

logger = structlog.get_logger(__name__)

OPENAI_BASE_URL = "https://api.openai.com/v1"
AZURE_API_VERSION = "2024-02-01"


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Interface every embedding provider implements."""

    @property
    def dimension(self) -> int:
        """Length of the vectors produced."""
        ...

    @property
    def model_name(self) -> str:
        """Name recorded alongside stored vectors."""
        ...

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of texts, one vector per text."""
        ...

    async def aclose(self) -> None:
        """Release network resources."""
        ...


class LocalEmbeddingProvider:
    """Deterministic hash-based embeddings.

    Each text is hashed with ``h = h * 31 + ord(c)``; the hash then seeds a
    linear congruential generator whose outputs fill the vector, which is
    finally L2-normalised. Identical texts always get identical vectors.
    """

    def __init__(self, dimension: int = 384) -> None:
        self._dimension = dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_name(self) -> str:
        return "local-hash"

    def _vector(self, text: str) -> list[float]:
        h = 0
        for ch in text:
            h = h * 31 + ord(ch)

        values: list[float] = []
        for _ in range(self._dimension):
            h = (h * 1103515245 + 12345) & 0x7FFFFFFF
            values.append((h % 1000) / 1000.0 - 0.5)

        norm = math.sqrt(sum(v * v for v in values))
        if norm == 0:
            return values
        return [v / norm for v in values]

    async def embed(self, texts: list[str]) -> list[list[float]]:
        return [self._vector(text) for text in texts]

    async def aclose(self) -> None:
        return None


class _RemoteEmbeddingProvider:
    """Shared httpx plumbing for HTTP embedding APIs."""

    provider_name = "remote"

    def __init__(self, dimension: int, timeout_seconds: int = 30) -> None:
        self._dimension = dimension
        self.timeout_seconds = timeout_seconds
        self._client: httpx.AsyncClient | None = None

    @property
    def dimension(self) -> int:
        return self._dimension

    async def __aenter__(self) -> _RemoteEmbeddingProvider:
        """Async context manager entry."""
        self._get_client()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.aclose()

    def _build_client(self) -> httpx.AsyncClient:
        raise NotImplementedError

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = self._build_client()
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _request(self, texts: list[str]) -> tuple[str, dict[str, Any]]:
        raise NotImplementedError

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed texts with one API call.

        Raises:
            ProviderUnavailableError: On timeouts, connection failures,
                non-2xx responses or malformed payloads.
        """
        if not texts:
            return []
        client = self._get_client()
        path, payload = self._request(texts)

        try:
            logger.debug(
                "embedding_request",
                provider=self.provider_name,
                batch_size=len(texts),
            )
            response = await client.post(path, json=payload)
            response.raise_for_status()
            data = response.json()
            items = sorted(data["data"], key=lambda item: item.get("index", 0))
            vectors = [item["embedding"] for item in items]
        except httpx.TimeoutException as e:
            logger.warning("embedding_provider_timeout", provider=self.provider_name, error=str(e))
            raise ProviderUnavailableError(f"{self.provider_name} request timed out") from e
        except httpx.HTTPStatusError as e:
            logger.warning(
                "embedding_provider_api_error",
                provider=self.provider_name,
                status_code=e.response.status_code,
            )
            raise ProviderUnavailableError(
                f"{self.provider_name} returned HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            logger.warning("embedding_provider_unreachable", provider=self.provider_name, error=str(e))
            raise ProviderUnavailableError(f"{self.provider_name} is unreachable") from e
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("embedding_provider_bad_response", provider=self.provider_name, error=str(e))
            raise ProviderUnavailableError(f"{self.provider_name} returned an invalid response") from e

        if len(vectors) != len(texts):
            raise ProviderUnavailableError(
                f"{self.provider_name} returned {len(vectors)} vectors for {len(texts)} texts"
            )
        return vectors


class OpenAIEmbeddingProvider(_RemoteEmbeddingProvider):
    """OpenAI embeddings API client.

    Attributes:
        api_key: OpenAI API key
        model: Embedding model name (default: text-embedding-3-small)
        timeout_seconds: Request timeout in seconds
    """

    provider_name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        dimension: int = 1536,
        timeout_seconds: int = 30,
        base_url: str = OPENAI_BASE_URL,
    ) -> None:
        if not api_key:
            raise InvalidInputError("OpenAI API key required", field="api_key")
        super().__init__(dimension, timeout_seconds)
        self.api_key = api_key
        self.model = model
        self.base_url = base_url

        logger.info("openai_embedding_provider_initialized", model=model, timeout=timeout_seconds)

    @property
    def model_name(self) -> str:
        return self.model

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout_seconds),
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )

    def _request(self, texts: list[str]) -> tuple[str, dict[str, Any]]:
        return "/embeddings", {"input": texts, "model": self.model}


class AzureOpenAIEmbeddingProvider(_RemoteEmbeddingProvider):
    """Azure OpenAI embedding deployment client.

    Attributes:
        endpoint: Resource endpoint, e.g. ``https://myres.openai.azure.com``
        api_key: Resource key sent in the ``api-key`` header
        deployment_name: Embedding deployment to call
        timeout_seconds: Request timeout in seconds
    """

    provider_name = "azure_openai"

    def __init__(
        self,
        endpoint: str,
        api_key: str,
        deployment_name: str,
        dimension: int = 1536,
        timeout_seconds: int = 30,
    ) -> None:
        if not endpoint:
            raise InvalidInputError("Azure OpenAI endpoint required", field="endpoint")
        if not api_key:
            raise InvalidInputError("Azure OpenAI API key required", field="api_key")
        super().__init__(dimension, timeout_seconds)
        self.endpoint = endpoint.rstrip("/")
        self.api_key = api_key
        self.deployment_name = deployment_name

        logger.info(
            "azure_openai_embedding_provider_initialized",
            deployment=deployment_name,
            timeout=timeout_seconds,
        )

    @property
    def model_name(self) -> str:
        return self.deployment_name

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.endpoint,
            timeout=httpx.Timeout(self.timeout_seconds),
            headers={"api-key": self.api_key, "Content-Type": "application/json"},
        )

    def _request(self, texts: list[str]) -> tuple[str, dict[str, Any]]:
        path = (
            f"/openai/deployments/{self.deployment_name}/embeddings"
            f"?api-version={AZURE_API_VERSION}"
        )
        return path, {"input": texts}


def create_provider(config: EmbeddingConfig) -> EmbeddingProvider:
    """Build the provider named by the embedding configuration.

    Raises:
        InvalidInputError: If a remote provider lacks its credentials.
    """
    if config.provider == "openai":
        return OpenAIEmbeddingProvider(
            api_key=config.api_key or "",
            model=config.model,
            dimension=config.dimension,
            timeout_seconds=config.timeout_seconds,
        )
    if config.provider == "azure_openai":
        return AzureOpenAIEmbeddingProvider(
            endpoint=config.endpoint or "",
            api_key=config.api_key or "",
            deployment_name=config.deployment_name,
            dimension=config.dimension,
            timeout_seconds=config.timeout_seconds,
        )
    return LocalEmbeddingProvider(dimension=config.dimension)
