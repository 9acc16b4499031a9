"""Health and service information endpoints for Headless PM.

Both endpoints are unauthenticated:
- ``/health`` reports database connectivity and background service state
- ``/info`` describes the service and its main endpoints

Example:
    >>> from fastapi import FastAPI
    >>> from headless_pm.web.routes.health import create_health_router
    >>>
    >>> app = FastAPI()
    >>> app.include_router(create_health_router())
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from headless_pm import __version__
from headless_pm.logging import get_logger
from headless_pm.web.dependencies import get_embedding_worker, get_session_factory

logger = get_logger(__name__)

SERVICE_NAME = "Headless PM"


class HealthResponse(BaseModel):
    """Health check response model.

    Attributes:
        status: "healthy" or "degraded"
        services: Per-service state (database, embedding_worker, mcp)
    """

    status: str
    services: dict[str, str]


def create_health_router() -> APIRouter:
    """Create health check router with endpoints.

    Routes:
        GET /health - Service health
        GET /info - Service information
    """
    router = APIRouter(tags=["health"])

    @router.get("/health", response_model=HealthResponse)
    async def health(
        request: Request,
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> dict[str, Any]:
        """Report database connectivity and background service state."""
        try:
            async with session_factory() as session:
                await session.execute(text("SELECT 1"))
            database = "connected"
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("health_check_failed", database="disconnected", error=str(exc))
            database = "disconnected"

        worker = get_embedding_worker(request)
        if worker is None:
            embedding_worker = "disabled"
        else:
            embedding_worker = "running" if worker.is_running else "stopped"

        mcp = "enabled" if request.app.state.config.mcp.enabled else "disabled"
        return {
            "status": "healthy" if database == "connected" else "degraded",
            "services": {
                "database": database,
                "embedding_worker": embedding_worker,
                "mcp": mcp,
            },
        }

    @router.get("/info")
    async def info(request: Request) -> dict[str, Any]:
        """Describe the service."""
        config = request.app.state.config
        endpoints = {
            "health": "/health",
            "api": "/api",
            "tokens": "/admin/tokens",
            "search": "/api/search",
        }
        if config.mcp.enabled:
            endpoints["mcp"] = "/mcp"
        return {
            "name": SERVICE_NAME,
            "version": __version__,
            "description": "Headless project management backend",
            "embedding_provider": config.embedding.provider if config.embedding.enabled else None,
            "endpoints": endpoints,
        }

    return router
