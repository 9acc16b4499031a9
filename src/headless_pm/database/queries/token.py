"""API token query functions for Headless PM.

Functions here only ever see token hashes; hashing and generation live in
headless_pm.web.auth.
"""

from __future__ import annotations

from datetime import datetime, timedelta

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from headless_pm.database.connection import transaction
from headless_pm.database.models.base import utc_now
from headless_pm.database.models.token import APIToken
from headless_pm.errors import InvalidInputError, NotFoundError

logger = structlog.get_logger(__name__)


async def create_api_token(
    session: AsyncSession,
    name: str,
    token_hash: str,
    scopes: str = "read,write",
    description: str | None = None,
    created_by: int = 0,
    user_id: int | None = None,
    expires_at: datetime | None = None,
) -> APIToken:
    """Store a new API token by its hash.

    Args:
        session: Active async database session.
        name: Human-readable label.
        token_hash: sha256 hex digest of the plaintext.
        scopes: Comma-separated scopes.
        description: Optional free text.
        created_by: Issuing user id (0 for the admin token).
        user_id: Optional user the token acts as.
        expires_at: Optional expiry.

    Returns:
        The stored APIToken.

    Raises:
        InvalidInputError: If the name is blank.
    """
    if not name or not name.strip():
        raise InvalidInputError("name is required", field="name")

    async with transaction(session):
        token = APIToken(
            name=name.strip(),
            token_hash=token_hash,
            description=description,
            scopes=scopes,
            created_by=created_by,
            user_id=user_id,
            expires_at=expires_at,
            is_active=True,
        )
        session.add(token)
        await session.flush()
        await session.refresh(token)

    logger.info("api_token_created", token_id=token.id, name=token.name, scopes=scopes)
    return token


async def get_api_token(session: AsyncSession, token_id: int) -> APIToken | None:
    """Retrieve a token by ID."""
    return await session.get(APIToken, token_id)


async def list_api_tokens(session: AsyncSession) -> list[APIToken]:
    """List all tokens, newest first."""
    result = await session.execute(select(APIToken).order_by(APIToken.id.desc()))
    return list(result.scalars().all())


async def find_token_by_hash(session: AsyncSession, token_hash: str) -> APIToken | None:
    """Look up a token by the sha256 digest of its plaintext."""
    result = await session.execute(select(APIToken).where(APIToken.token_hash == token_hash))
    return result.scalar_one_or_none()


async def revoke_api_token(session: AsyncSession, token_id: int) -> APIToken:
    """Revoke a token by setting its expiry to now.

    Raises:
        NotFoundError: If the token does not exist.
    """
    async with transaction(session):
        token = await session.get(APIToken, token_id)
        if token is None:
            raise NotFoundError("Token not found", field="token_id")
        token.expires_at = utc_now()
        await session.flush()

    logger.info("api_token_revoked", token_id=token_id)
    return token


async def touch_token(session: AsyncSession, token_id: int, when: datetime | None = None) -> datetime:
    """Advance a token's last-used stamp.

    The stamp never moves backwards and always increases on each call,
    even when two uses fall on the same clock tick.

    Returns:
        The stored last-used time.
    """
    async with transaction(session):
        token = await session.get(APIToken, token_id)
        if token is None:
            raise NotFoundError("Token not found", field="token_id")
        stamp = when or utc_now()
        if token.last_used is not None and stamp <= token.last_used:
            stamp = token.last_used + timedelta(microseconds=1)
        await session.execute(
            update(APIToken).where(APIToken.id == token_id).values(last_used=stamp)
        )
    return stamp
