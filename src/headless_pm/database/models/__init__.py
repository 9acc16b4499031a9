"""SQLAlchemy ORM models for Headless PM.

This module defines the database schema: projects, epics, tasks and their
dependencies, labels, comments, attachments, users, API tokens, the
activity log and the embedding index.

All models use SQLAlchemy 2.0 declarative style with Mapped[] type annotations.
"""

from headless_pm.database.models.activity import Activity
from headless_pm.database.models.base import Base, TimestampMixin, UTCDateTime, utc_now
from headless_pm.database.models.comment import Attachment, Comment
from headless_pm.database.models.embedding import EmbeddingRecord, EntityKind
from headless_pm.database.models.epic import Epic, EpicStatus
from headless_pm.database.models.label import Label
from headless_pm.database.models.project import Project, ProjectStatus, project_members
from headless_pm.database.models.task import (
    PRIORITY_RANK,
    DependencyType,
    Task,
    TaskDependency,
    TaskPriority,
    TaskStatus,
    task_labels,
    task_watchers,
)
from headless_pm.database.models.token import APIToken
from headless_pm.database.models.user import AuthSession, RefreshToken, User, UserRole

__all__ = [
    "Base",
    "TimestampMixin",
    "UTCDateTime",
    "utc_now",
    "Project",
    "ProjectStatus",
    "project_members",
    "Epic",
    "EpicStatus",
    "Task",
    "TaskStatus",
    "TaskPriority",
    "PRIORITY_RANK",
    "TaskDependency",
    "DependencyType",
    "task_labels",
    "task_watchers",
    "Label",
    "Comment",
    "Attachment",
    "User",
    "UserRole",
    "AuthSession",
    "RefreshToken",
    "APIToken",
    "Activity",
    "EmbeddingRecord",
    "EntityKind",
]
