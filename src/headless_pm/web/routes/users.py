"""User endpoints for Headless PM.

Listing and reading users needs the ``read`` scope; creating and
deleting users is reserved for admins. Deleting a user keeps their tasks
and clears the references to them.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from fastapi import APIRouter, Depends
from fastapi import status as http_status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from headless_pm.database.models.user import UserRole
from headless_pm.database.queries import user as user_queries
from headless_pm.errors import NotFoundError
from headless_pm.logging import get_logger
from headless_pm.web.auth import AuthContext, require_admin, require_scopes
from headless_pm.web.dependencies import get_session_factory

logger = get_logger(__name__)


class UserCreate(BaseModel):
    """Request schema for creating a user."""

    username: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255)
    password: str | None = Field(default=None, min_length=8)
    full_name: str | None = None
    role: str = "member"


class UserResponse(BaseModel):
    """Response schema for user data; the password hash is never returned."""

    id: int
    username: str
    email: str
    full_name: str | None
    role: UserRole
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


def create_users_router() -> APIRouter:
    """Create users router.

    Routes:
        GET /api/users - List users
        POST /api/users - Create a user (admin)
        GET /api/users/{user_id} - Get a user
        DELETE /api/users/{user_id} - Delete a user (admin)
    """
    router = APIRouter(prefix="/api/users", tags=["users"])

    @router.get("", response_model=list[UserResponse], dependencies=[Depends(require_scopes("read"))])
    async def list_users(
        active_only: bool = False,
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> list[UserResponse]:
        async with session_factory() as session:
            users = await user_queries.list_users(session, active_only=active_only)
        return [UserResponse.model_validate(u) for u in users]

    @router.post("", response_model=UserResponse, status_code=http_status.HTTP_201_CREATED)
    async def create_user(
        user_data: UserCreate,
        auth: AuthContext = Depends(require_admin),  # noqa: B008
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> UserResponse:
        async with session_factory() as session:
            user = await user_queries.create_user(
                session,
                username=user_data.username,
                email=user_data.email,
                password=user_data.password,
                full_name=user_data.full_name,
                role=user_data.role,
            )
        logger.info("user_created_via_api", user_id=user.id)
        return UserResponse.model_validate(user)

    @router.get(
        "/{user_id}",
        response_model=UserResponse,
        dependencies=[Depends(require_scopes("read"))],
    )
    async def get_user(
        user_id: int,
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> UserResponse:
        async with session_factory() as session:
            user = await user_queries.get_user(session, user_id)
        if user is None:
            raise NotFoundError("User not found", field="user_id")
        return UserResponse.model_validate(user)

    @router.delete("/{user_id}", status_code=http_status.HTTP_204_NO_CONTENT)
    async def delete_user(
        user_id: int,
        auth: AuthContext = Depends(require_admin),  # noqa: B008
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> None:
        async with session_factory() as session:
            await user_queries.delete_user(session, user_id)
        logger.info("user_deleted_via_api", user_id=user_id)

    return router
