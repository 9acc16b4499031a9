"""Exception handlers mapping errors to the JSON error envelope.

Every error response has the shape ``{"error": "<message>"}``, plus
``"field"`` when a specific input is at fault and ``"required_scope"``
for scope failures. Database and filesystem failures are logged and
reported as a generic 500; SQL and stack traces never reach the client.
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from headless_pm.errors import HeadlessPMError
from headless_pm.logging import get_logger

logger = get_logger(__name__)

INTERNAL_ERROR = {"error": "Internal server error"}


def validation_error_body(exc: RequestValidationError) -> dict[str, str]:
    """Summarise the first validation error as an error envelope."""
    errors = exc.errors()
    if not errors:
        return {"error": "Invalid request"}
    first = errors[0]
    location = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
    body = {"error": first.get("msg", "Invalid request")}
    if location:
        body["field"] = ".".join(location)
    return body


async def handle_domain_error(request: Request, exc: HeadlessPMError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request_error", path=request.url.path, error=exc.message, error_type=type(exc).__name__)
    else:
        logger.info("request_rejected", path=request.url.path, status_code=exc.status_code, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    body = validation_error_body(exc)
    logger.info("request_invalid", path=request.url.path, **body)
    return JSONResponse(status_code=400, content=body)


async def handle_storage_failure(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "request_storage_failure",
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
    )
    return JSONResponse(status_code=500, content=INTERNAL_ERROR)


def register_exception_handlers(app: FastAPI) -> None:
    """Install the error envelope handlers on an application."""
    app.add_exception_handler(HeadlessPMError, handle_domain_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(SQLAlchemyError, handle_storage_failure)
    app.add_exception_handler(OSError, handle_storage_failure)
