"""FastAPI application factory for Headless PM.

This module provides the main application factory function that creates
and configures a FastAPI application with:
- CORS middleware for cross-origin requests
- Request logging middleware with correlation IDs
- The ``{"error": ...}`` exception envelope
- Database, dependency engine, attachment storage and embedding worker
  lifecycle management
- The REST routers and, when enabled, the MCP endpoint

Example usage:
    >>> from headless_pm.config import HeadlessPMConfig
    >>> from headless_pm.web.app import create_app
    >>>
    >>> config = HeadlessPMConfig()
    >>> app = create_app(config)
    >>>
    >>> # Run with uvicorn
    >>> import uvicorn
    >>> uvicorn.run(app, host="0.0.0.0", port=8080)
"""

from __future__ import annotations

from collections.abc import Callable
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession

from headless_pm import __version__
from headless_pm.config import HeadlessPMConfig
from headless_pm.database.connection import get_engine, get_session_factory, init_database
from headless_pm.graph.dependencies import DependencyEngine
from headless_pm.intelligence.embedding_worker import EmbeddingWorker
from headless_pm.intelligence.embeddings import EmbeddingService
from headless_pm.intelligence.index import EmbeddingIndex
from headless_pm.intelligence.providers import create_provider
from headless_pm.logging import get_logger
from headless_pm.mcp.dispatcher import MCPDispatcher
from headless_pm.mcp.router import create_mcp_router
from headless_pm.mcp.tools import ToolContext
from headless_pm.storage import AttachmentStorage
from headless_pm.web.errors import register_exception_handlers
from headless_pm.web.middleware import RequestLoggingMiddleware
from headless_pm.web.routes import (
    create_comments_router,
    create_epics_router,
    create_health_router,
    create_labels_router,
    create_projects_router,
    create_search_router,
    create_tasks_router,
    create_tokens_router,
    create_users_router,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = get_logger(__name__)

WORKER_SHUTDOWN_TIMEOUT = 10.0


def init_services(
    app: FastAPI,
    session_factory: Callable[[], AsyncSession],
    embedding_service: EmbeddingService | None = None,
) -> None:
    """Create the application services and store them on ``app.state``.

    The embedding worker is created but not started; the lifespan starts
    it. Tests call this directly with their own session factory.

    Args:
        app: Application whose state receives the services.
        session_factory: Callable producing database sessions.
        embedding_service: Optional service overriding the configured provider.
    """
    config: HeadlessPMConfig = app.state.config

    if embedding_service is None:
        embedding_service = EmbeddingService(create_provider(config.embedding))
    index = EmbeddingIndex(session_factory)
    worker = None
    if config.embedding.enabled:
        worker = EmbeddingWorker(
            embedding_service,
            index,
            session_factory,
            capacity=config.embedding.queue_capacity,
            debounce_seconds=config.embedding.debounce_ms / 1000,
        )

    app.state.session_factory = session_factory
    app.state.dependency_engine = DependencyEngine(session_factory)
    app.state.storage = AttachmentStorage(
        config.storage.upload_dir,
        max_upload_mb=config.storage.max_upload_mb,
    )
    app.state.embedding_service = embedding_service
    app.state.embedding_index = index
    app.state.embedding_worker = worker
    app.state.mcp_dispatcher = MCPDispatcher(
        ToolContext(
            session_factory=session_factory,
            engine=app.state.dependency_engine,
            storage=app.state.storage,
            embedding_index=index,
            embedding_service=embedding_service,
            embedding_worker=worker,
            max_depth=config.database.max_delete_depth,
        )
    )

    logger.info(
        "services_initialized",
        embedding_provider=config.embedding.provider,
        embedding_worker=worker is not None,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle.

    This context manager handles:
    - Creating the database engine, schema and session factory on startup
    - Creating the services and starting the embedding worker
    - Draining the worker, closing the provider and disposing of database
      connections on shutdown

    Args:
        app: FastAPI application instance

    Yields:
        None after startup, cleans up on context exit
    """
    config: HeadlessPMConfig = app.state.config

    logger.info("app_startup_begin", host=config.server.host, port=config.server.port)

    engine = get_engine(config.database)
    await init_database(engine)
    app.state.engine = engine
    init_services(app, get_session_factory(engine))

    worker: EmbeddingWorker | None = app.state.embedding_worker
    if worker is not None:
        worker.start()

    logger.info("app_startup_complete", database=config.database.database_url)

    yield

    logger.info("app_shutdown_begin")
    if worker is not None:
        await worker.shutdown(WORKER_SHUTDOWN_TIMEOUT)
    await app.state.embedding_service.aclose()
    await engine.dispose()
    logger.info("database_pool_disposed")


def create_app(config: HeadlessPMConfig | None = None) -> FastAPI:
    """Create and configure a FastAPI application.

    Args:
        config: Optional HeadlessPMConfig. If None, creates default config.

    Returns:
        Configured FastAPI application instance.

    Example:
        >>> from headless_pm.config import HeadlessPMConfig, MCPConfig
        >>>
        >>> # Default configuration
        >>> app = create_app()
        >>>
        >>> # Without the MCP endpoint
        >>> app = create_app(HeadlessPMConfig(mcp=MCPConfig(enabled=False)))
    """
    if config is None:
        config = HeadlessPMConfig()

    app = FastAPI(
        title="Headless PM",
        version=__version__,
        description="Headless project management backend",
        lifespan=lifespan,
    )

    # Store config in app.state for lifespan and dependency access
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    register_exception_handlers(app)

    app.include_router(create_health_router())
    app.include_router(create_tokens_router())
    app.include_router(create_projects_router())
    app.include_router(create_tasks_router())
    app.include_router(create_epics_router())
    app.include_router(create_labels_router())
    app.include_router(create_comments_router())
    app.include_router(create_users_router())
    app.include_router(create_search_router())
    if config.mcp.enabled:
        app.include_router(create_mcp_router())

    logger.info(
        "app_created",
        cors_origins=config.server.cors_origins,
        mcp_enabled=config.mcp.enabled,
        version=__version__,
    )

    return app
