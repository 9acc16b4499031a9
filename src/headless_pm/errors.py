"""Error taxonomy for Headless PM.

Every failure that can reach a caller is raised as a subclass of
HeadlessPMError. The web layer maps each class to exactly one HTTP status
code; the MCP dispatcher maps them to tool-level error results.

Example usage:
    >>> from headless_pm.errors import NotFoundError
    >>> raise NotFoundError("Task not found", field="task_id")
"""

from __future__ import annotations


class HeadlessPMError(Exception):
    """Base exception for all domain errors.

    Attributes:
        message: Human-readable message safe to return to clients
        field: Optional name of the offending input field
        status_code: HTTP status code the error maps to
    """

    status_code = 500

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict[str, str]:
        """Render the error envelope returned to clients."""
        body = {"error": self.message}
        if self.field is not None:
            body["field"] = self.field
        return body


class InvalidInputError(HeadlessPMError):
    """Raised for malformed input, self-dependencies and unknown enum values."""

    status_code = 400


class UnauthorizedError(HeadlessPMError):
    """Raised when a request carries no token or an invalid/expired one."""

    status_code = 401


class ForbiddenError(HeadlessPMError):
    """Raised when a valid token lacks a required scope or admin rights."""

    status_code = 403

    def __init__(
        self,
        message: str,
        field: str | None = None,
        required_scope: str | None = None,
    ) -> None:
        super().__init__(message, field)
        self.required_scope = required_scope

    def to_dict(self) -> dict[str, str]:
        body = super().to_dict()
        if self.required_scope is not None:
            body["required_scope"] = self.required_scope
        return body


class NotFoundError(HeadlessPMError):
    """Raised when a referenced entity does not exist."""

    status_code = 404


class DuplicateEntryError(HeadlessPMError):
    """Raised on unique-constraint conflicts and duplicate dependencies."""

    status_code = 409


class CircularDependencyError(HeadlessPMError):
    """Raised when a new dependency would close a cycle."""

    status_code = 422


class StorageError(HeadlessPMError):
    """Raised when the database or filesystem fails underneath an operation."""

    status_code = 500


class ProviderUnavailableError(HeadlessPMError):
    """Raised by embedding providers on transport or API failures.

    Handled by the embedding worker (retry, then drop). Only the synchronous
    search endpoint surfaces it, as a 503.
    """

    status_code = 503
