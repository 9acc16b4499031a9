"""Unit tests for the error taxonomy."""

from __future__ import annotations

import pytest

from headless_pm.errors import (
    CircularDependencyError,
    DuplicateEntryError,
    ForbiddenError,
    HeadlessPMError,
    InvalidInputError,
    NotFoundError,
    ProviderUnavailableError,
    StorageError,
    UnauthorizedError,
)


@pytest.mark.parametrize(
    ("error_cls", "status"),
    [
        (InvalidInputError, 400),
        (UnauthorizedError, 401),
        (ForbiddenError, 403),
        (NotFoundError, 404),
        (DuplicateEntryError, 409),
        (CircularDependencyError, 422),
        (StorageError, 500),
        (ProviderUnavailableError, 503),
    ],
)
def test_status_codes(error_cls: type[HeadlessPMError], status: int) -> None:
    """Each error class maps to exactly one HTTP status."""
    error = error_cls("boom")
    assert isinstance(error, HeadlessPMError)
    assert error.status_code == status


def test_envelope_with_field() -> None:
    error = NotFoundError("Task not found", field="task_id")
    assert error.to_dict() == {"error": "Task not found", "field": "task_id"}
    assert str(error) == "Task not found"


def test_envelope_without_field() -> None:
    assert DuplicateEntryError("Dependency already exists").to_dict() == {
        "error": "Dependency already exists"
    }


def test_forbidden_carries_required_scope() -> None:
    error = ForbiddenError("Missing scope", required_scope="tasks:write")
    assert error.to_dict() == {"error": "Missing scope", "required_scope": "tasks:write"}
