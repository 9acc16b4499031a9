"""API token endpoints for Headless PM.

Admins issue and revoke API tokens under ``/admin/tokens``. The plaintext
token is returned once, in the create response; only its sha256 digest
is stored. Users with a password can also exchange their credentials
for a short-lived token at ``/auth/login``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from fastapi import APIRouter, Depends
from fastapi import status as http_status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from headless_pm.database.models.base import utc_now
from headless_pm.database.models.user import UserRole
from headless_pm.database.queries import token as token_queries
from headless_pm.database.queries import user as user_queries
from headless_pm.errors import NotFoundError, UnauthorizedError
from headless_pm.logging import get_logger
from headless_pm.web.auth import (
    AuthContext,
    authenticate,
    generate_token,
    hash_token,
    parse_scopes,
    require_admin,
)
from headless_pm.web.dependencies import get_session_factory

logger = get_logger(__name__)


class TokenCreate(BaseModel):
    """Request schema for issuing an API token.

    Attributes:
        name: Human-readable label
        description: Optional free text
        scopes: Comma-separated scopes (default read,write)
        expires_in_days: Lifetime in days; the token never expires if omitted
        user_id: Optional user the token acts as
    """

    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    scopes: str = "read,write"
    expires_in_days: int | None = Field(default=None, ge=1)
    user_id: int | None = None


class TokenResponse(BaseModel):
    """Response schema for token metadata; never includes the plaintext."""

    id: int
    name: str
    description: str | None
    scopes: str
    created_by: int
    user_id: int | None
    expires_at: datetime | None
    last_used: datetime | None
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class TokenCreated(TokenResponse):
    token: str


class LoginRequest(BaseModel):
    """Request schema for exchanging user credentials for an API token."""

    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    expires_in_days: int = Field(default=1, ge=1, le=365)


# Scopes granted to a token issued through /auth/login
ROLE_SCOPES = {
    UserRole.admin: "admin",
    UserRole.manager: "read,write",
    UserRole.member: "read,write",
    UserRole.viewer: "read",
}


def create_tokens_router() -> APIRouter:
    """Create token management router.

    Routes:
        POST /admin/tokens - Issue a token (admin)
        GET /admin/tokens - List tokens (admin)
        GET /admin/tokens/{token_id} - Get token metadata (admin)
        DELETE /admin/tokens/{token_id} - Revoke a token (admin)
        POST /auth/login - Exchange username and password for a token
        GET /auth/validate - Verify the presented token
    """
    router = APIRouter(tags=["auth"])

    @router.post("/admin/tokens", response_model=TokenCreated, status_code=http_status.HTTP_201_CREATED)
    async def create_token(
        token_data: TokenCreate,
        auth: AuthContext = Depends(require_admin),  # noqa: B008
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> TokenCreated:
        plaintext = generate_token()
        expires_at = (
            utc_now() + timedelta(days=token_data.expires_in_days)
            if token_data.expires_in_days is not None
            else None
        )
        async with session_factory() as session:
            record = await token_queries.create_api_token(
                session,
                name=token_data.name,
                token_hash=hash_token(plaintext),
                scopes=",".join(parse_scopes(token_data.scopes)),
                description=token_data.description,
                created_by=auth.user_id or 0,
                user_id=token_data.user_id,
                expires_at=expires_at,
            )

        logger.info("api_token_issued", token_id=record.id, scopes=record.scopes)
        return TokenCreated(**TokenResponse.model_validate(record).model_dump(), token=plaintext)

    @router.get(
        "/admin/tokens",
        response_model=list[TokenResponse],
        dependencies=[Depends(require_admin)],
    )
    async def list_tokens(
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> list[TokenResponse]:
        async with session_factory() as session:
            records = await token_queries.list_api_tokens(session)
        return [TokenResponse.model_validate(r) for r in records]

    @router.get(
        "/admin/tokens/{token_id}",
        response_model=TokenResponse,
        dependencies=[Depends(require_admin)],
    )
    async def get_token(
        token_id: int,
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> TokenResponse:
        async with session_factory() as session:
            record = await token_queries.get_api_token(session, token_id)
        if record is None:
            raise NotFoundError("Token not found", field="token_id")
        return TokenResponse.model_validate(record)

    @router.delete("/admin/tokens/{token_id}", status_code=http_status.HTTP_204_NO_CONTENT)
    async def revoke_token(
        token_id: int,
        auth: AuthContext = Depends(require_admin),  # noqa: B008
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> None:
        async with session_factory() as session:
            await token_queries.revoke_api_token(session, token_id)

    @router.post("/auth/login", response_model=TokenCreated, status_code=http_status.HTTP_201_CREATED)
    async def login(
        credentials: LoginRequest,
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> TokenCreated:
        """Issue a token acting as the user whose credentials match."""
        async with session_factory() as session:
            user = await user_queries.get_user_by_username(session, credentials.username)
            verified = (
                user is not None
                and user.is_active
                and await asyncio.to_thread(
                    user_queries.verify_password, credentials.password, user.password_hash
                )
            )
            if not verified:
                logger.info("login_rejected", username=credentials.username)
                raise UnauthorizedError("Invalid username or password")

            plaintext = generate_token()
            record = await token_queries.create_api_token(
                session,
                name=f"login:{user.username}",
                token_hash=hash_token(plaintext),
                scopes=ROLE_SCOPES[user.role],
                created_by=user.id,
                user_id=user.id,
                expires_at=utc_now() + timedelta(days=credentials.expires_in_days),
            )

        logger.info("login_token_issued", token_id=record.id, user_id=user.id)
        return TokenCreated(**TokenResponse.model_validate(record).model_dump(), token=plaintext)

    @router.get("/auth/validate")
    async def validate(auth: AuthContext = Depends(authenticate)) -> dict[str, Any]:  # noqa: B008
        """Report who the presented token authenticates as."""
        return {
            "valid": True,
            "token_id": auth.token_id,
            "user_id": auth.user_id,
            "user": auth.user,
            "scopes": list(auth.scopes),
            "is_admin": auth.is_admin,
        }

    return router
