"""Structured logging configuration for Headless PM.

This module configures structlog with support for:
- JSON and console output formats
- File rotation based on size
- Correlation IDs propagated from the X-Correlation-ID header
- Caller context binding (token and user of the current request)

The logging system integrates structlog with Python's stdlib logging
for handlers (file rotation), while using structlog exclusively for
actual log emission.

Example usage:
    >>> from headless_pm.config import LoggingConfig
    >>> from headless_pm.logging import setup_logging, get_logger, bind_caller_context
    >>>
    >>> config = LoggingConfig(level="INFO", format="json", file=Path("pm.log"))
    >>> setup_logging(config)
    >>>
    >>> logger = get_logger(__name__)
    >>> bind_caller_context(token_id=3, user="ci")
    >>> logger.info("task_created", task_id=42)
"""

from __future__ import annotations

import contextvars
import logging
import logging.handlers
import sys
from typing import Any

import structlog

from headless_pm.config import LoggingConfig

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id", default=None
)


def add_correlation_id(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Add correlation_id to log event if set in context.

    Args:
        logger: Logger instance (unused, required by structlog protocol)
        method_name: Log method name (unused, required by structlog protocol)
        event_dict: Current event dictionary to augment

    Returns:
        Event dictionary with correlation_id added if available
    """
    correlation_id = _correlation_id.get()
    if correlation_id is not None:
        event_dict["correlation_id"] = correlation_id
    return event_dict


def set_correlation_id(correlation_id: str | None) -> None:
    """Set correlation ID for current context.

    Args:
        correlation_id: Correlation ID string or None to clear
    """
    _correlation_id.set(correlation_id)


def get_correlation_id() -> str | None:
    """Get current correlation ID from context."""
    return _correlation_id.get()


def bind_caller_context(token_id: int | None, user: str) -> None:
    """Bind the authenticated caller to all subsequent logs in this context.

    Args:
        token_id: API token id, or None for the static admin token
        user: Display name of the caller
    """
    structlog.contextvars.bind_contextvars(token_id=token_id, caller=user)


def clear_caller_context() -> None:
    """Remove caller fields bound by bind_caller_context."""
    structlog.contextvars.unbind_contextvars("token_id", "caller")


def setup_logging(config: LoggingConfig) -> None:
    """Configure structlog with the given configuration.

    Args:
        config: Logging configuration from HeadlessPMConfig

    Example:
        >>> setup_logging(LoggingConfig(level="DEBUG", format="console"))
    """
    log_level = getattr(logging, config.level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    if config.file is not None:
        config.file.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.handlers.RotatingFileHandler(
            filename=config.file,
            maxBytes=config.rotation_size_mb * 1024 * 1024,
            backupCount=config.retention_count,
            encoding="utf-8",
        )
    else:
        handler = logging.StreamHandler(sys.stdout)

    handler.setLevel(log_level)
    root_logger.addHandler(handler)

    if config.format == "json":
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.contextvars.merge_contextvars,
            add_correlation_id,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    # Quieten per-statement engine logs unless SQL echo is wanted
    logging.getLogger("sqlalchemy.engine").setLevel(max(log_level, logging.WARNING))


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Configured structlog BoundLogger instance
    """
    return structlog.get_logger(name)
