"""Pytest fixtures for integration tests.

Provides async database fixtures backed by a temporary SQLite file (so
that concurrent sessions each get their own connection), a fully wired
application with the local embedding provider, and an HTTP client that
talks to it in-process.

The application lifespan is not run by ASGITransport; ``init_services``
wires the same services the lifespan would, against the test database.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from headless_pm.config import DatabaseConfig, EmbeddingConfig, HeadlessPMConfig, StorageConfig
from headless_pm.database.connection import get_engine, get_session_factory, init_database
from headless_pm.database.models.embedding import EntityKind
from headless_pm.intelligence.embeddings import EmbeddingService
from headless_pm.intelligence.providers import LocalEmbeddingProvider
from headless_pm.web.app import create_app, init_services

ADMIN_TOKEN = "test-admin-token"


class RecordingWorker:
    """Stand-in for the embedding worker that remembers queued jobs."""

    def __init__(self) -> None:
        self.jobs: list[tuple[EntityKind, int]] = []

    def queue_job(self, kind: EntityKind | str, entity_id: int) -> bool:
        self.jobs.append((EntityKind(kind), entity_id))
        return True

    @property
    def is_running(self) -> bool:
        return True


@pytest.fixture
def test_config(tmp_path: Path) -> HeadlessPMConfig:
    """Configuration pointing every path at a temporary directory."""
    return HeadlessPMConfig(
        database=DatabaseConfig(data_dir=tmp_path / "data"),
        storage=StorageConfig(upload_dir=tmp_path / "uploads"),
        embedding=EmbeddingConfig(provider="local", dimension=32, enabled=True),
        admin_api_token=ADMIN_TOKEN,
    )


@pytest_asyncio.fixture
async def engine(test_config: HeadlessPMConfig) -> AsyncGenerator[AsyncEngine, None]:
    """Create a file-backed SQLite async engine with all tables.

    Yields:
        Configured AsyncEngine instance.
    """
    test_engine = get_engine(test_config.database)
    await init_database(test_engine)

    yield test_engine

    await test_engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to the test engine."""
    return get_session_factory(engine)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a new async database session for each test.

    Yields:
        AsyncSession instance for the test.
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def embedding_service() -> EmbeddingService:
    return EmbeddingService(LocalEmbeddingProvider(dimension=32))


@pytest.fixture
def recording_worker() -> RecordingWorker:
    return RecordingWorker()


@pytest_asyncio.fixture
async def app(
    test_config: HeadlessPMConfig,
    session_factory: async_sessionmaker[AsyncSession],
    embedding_service: EmbeddingService,
    recording_worker: RecordingWorker,
) -> FastAPI:
    """Application wired to the test database.

    The embedding worker is replaced by a RecordingWorker so tests can
    assert on queued jobs without a background task.
    """
    test_app = create_app(test_config)
    init_services(test_app, session_factory, embedding_service=embedding_service)
    test_app.state.embedding_worker = recording_worker
    test_app.state.mcp_dispatcher.context.embedding_worker = recording_worker
    return test_app


@pytest_asyncio.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing the FastAPI app.

    Yields:
        AsyncClient configured to test the application.
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}


@pytest.fixture
def issue_token(
    async_client: AsyncClient,
    admin_headers: dict[str, str],
) -> Callable[..., Awaitable[dict[str, Any]]]:
    """Issue API tokens through the admin endpoint.

    Returns:
        Coroutine function taking TokenCreate fields and returning the
        response body, plaintext token included.
    """

    async def issue(**fields: Any) -> dict[str, Any]:
        body = {"name": "test-token", **fields}
        response = await async_client.post("/admin/tokens", json=body, headers=admin_headers)
        assert response.status_code == 201, response.text
        return response.json()

    return issue


@pytest.fixture
def make_project(
    async_client: AsyncClient,
    admin_headers: dict[str, str],
) -> Callable[..., Awaitable[dict[str, Any]]]:
    """Create projects through the API as the admin."""

    async def make(name: str = "Apollo", **fields: Any) -> dict[str, Any]:
        response = await async_client.post(
            "/api/projects", json={"name": name, **fields}, headers=admin_headers
        )
        assert response.status_code == 201, response.text
        return response.json()

    return make


@pytest.fixture
def make_task(
    async_client: AsyncClient,
    admin_headers: dict[str, str],
) -> Callable[..., Awaitable[dict[str, Any]]]:
    """Create tasks in a project through the API as the admin."""

    async def make(project: int | str, title: str, **fields: Any) -> dict[str, Any]:
        response = await async_client.post(
            f"/api/projects/{project}/tasks",
            json={"title": title, **fields},
            headers=admin_headers,
        )
        assert response.status_code == 201, response.text
        return response.json()

    return make
