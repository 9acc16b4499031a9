"""Activity log query functions for Headless PM.

``record_activity`` is called by the other query modules inside their
write transaction so that a change and its log row commit together.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from headless_pm.database.models.activity import Activity
from headless_pm.database.models.task import Task

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Actor:
    """Identity a mutation is attributed to.

    Attributes:
        user_id: Acting user id; 0 stands for the admin token or the system.
        name: Display name written to the activity log.
    """

    user_id: int = 0
    name: str = "system"


SYSTEM_ACTOR = Actor()


def render_value(value: Any) -> str | None:
    """Render a field value the way it is stored in the activity log."""
    if value is None:
        return None
    if isinstance(value, enum.Enum):
        return str(value.value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def record_activity(
    session: AsyncSession,
    task: Task,
    actor: Actor,
    action: str,
    description: str,
    field_name: str | None = None,
    old_value: Any = None,
    new_value: Any = None,
) -> Activity:
    """Add an activity row to the session's open transaction.

    Args:
        session: Session with an open write transaction.
        task: Task the activity concerns.
        actor: Who performed the change.
        action: Action name (created, status_changed, ...).
        description: Human-readable summary.
        field_name: Changed field, if any.
        old_value: Previous value.
        new_value: New value.

    Returns:
        The pending Activity instance.
    """
    activity = Activity(
        task_id=task.id,
        project_id=task.project_id,
        user_id=actor.user_id,
        user_name=actor.name,
        action=action,
        field_name=field_name,
        old_value=render_value(old_value),
        new_value=render_value(new_value),
        description=description,
    )
    session.add(activity)
    return activity


async def list_task_activity(
    session: AsyncSession,
    task_id: int,
    limit: int = 100,
) -> list[Activity]:
    """List the activity of a task, newest first.

    Args:
        session: Active async database session.
        task_id: Task to list activity for.
        limit: Maximum rows returned.

    Returns:
        Activity rows ordered by creation time descending.
    """
    stmt = (
        select(Activity)
        .where(Activity.task_id == task_id)
        .order_by(Activity.created_at.desc(), Activity.id.desc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())
