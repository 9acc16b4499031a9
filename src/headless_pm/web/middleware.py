"""Request logging middleware for Headless PM.

This module provides middleware for logging HTTP requests with:
- Request method, path, and status code
- Request duration in milliseconds
- Correlation IDs, echoed back in the X-Correlation-ID header
- Structured logging via structlog

Example:
    >>> from fastapi import FastAPI
    >>> from headless_pm.web.middleware import RequestLoggingMiddleware
    >>>
    >>> app = FastAPI()
    >>> app.add_middleware(RequestLoggingMiddleware)
"""

from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING

from starlette.middleware.base import BaseHTTPMiddleware

from headless_pm.logging import clear_caller_context, get_logger, set_correlation_id

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from starlette.requests import Request
    from starlette.responses import Response

logger = get_logger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware that logs HTTP requests with timing and correlation IDs.

    The correlation ID is taken from the X-Correlation-ID header if present,
    otherwise a new UUID is generated. Caller identity bound by the auth
    gate is cleared when the request finishes.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        """Process request with logging.

        Args:
            request: Incoming HTTP request
            call_next: Next middleware or route handler

        Returns:
            HTTP response from downstream handlers
        """
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
        set_correlation_id(correlation_id)
        start_time = time.perf_counter()

        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
            query=str(request.url.query) if request.url.query else None,
        )

        try:
            response = await call_next(request)

            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
            )

            response.headers["X-Correlation-ID"] = correlation_id
            return response

        except Exception as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration_ms, 2),
                error=str(exc),
                exc_info=True,
            )
            raise

        finally:
            set_correlation_id(None)
            clear_caller_context()
