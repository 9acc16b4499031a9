"""FastAPI route definitions for the Headless PM REST API.

This package contains route handlers for projects, tasks, dependencies,
epics, labels, comments, attachments, users, API tokens, semantic search
and health checks.
"""

from __future__ import annotations

from headless_pm.web.routes.comments import (
    AttachmentCreate,
    AttachmentResponse,
    CommentCreate,
    CommentResponse,
    create_comments_router,
)
from headless_pm.web.routes.epics import (
    EpicCreate,
    EpicResponse,
    EpicUpdate,
    create_epics_router,
)
from headless_pm.web.routes.health import HealthResponse, create_health_router
from headless_pm.web.routes.labels import (
    LabelCreate,
    LabelResponse,
    TaskLabels,
    create_labels_router,
)
from headless_pm.web.routes.projects import (
    ProjectCreate,
    ProjectResponse,
    ProjectUpdate,
    create_projects_router,
)
from headless_pm.web.routes.search import SearchResponse, create_search_router
from headless_pm.web.routes.tasks import (
    ActivityResponse,
    DependencyCreate,
    DependencyResponse,
    TaskCreate,
    TaskResponse,
    TaskUpdate,
    create_tasks_router,
)
from headless_pm.web.routes.tokens import (
    TokenCreate,
    TokenCreated,
    TokenResponse,
    create_tokens_router,
)
from headless_pm.web.routes.users import UserCreate, UserResponse, create_users_router

__all__ = [
    # Comments and attachments
    "AttachmentCreate",
    "AttachmentResponse",
    "CommentCreate",
    "CommentResponse",
    "create_comments_router",
    # Epics
    "EpicCreate",
    "EpicResponse",
    "EpicUpdate",
    "create_epics_router",
    # Health
    "HealthResponse",
    "create_health_router",
    # Labels
    "LabelCreate",
    "LabelResponse",
    "TaskLabels",
    "create_labels_router",
    # Projects
    "ProjectCreate",
    "ProjectResponse",
    "ProjectUpdate",
    "create_projects_router",
    # Search
    "SearchResponse",
    "create_search_router",
    # Tasks
    "ActivityResponse",
    "DependencyCreate",
    "DependencyResponse",
    "TaskCreate",
    "TaskResponse",
    "TaskUpdate",
    "create_tasks_router",
    # Tokens
    "TokenCreate",
    "TokenCreated",
    "TokenResponse",
    "create_tokens_router",
    # Users
    "UserCreate",
    "UserResponse",
    "create_users_router",
]
