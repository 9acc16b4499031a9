"""API-token authentication for Headless PM.

Tokens arrive as ``Authorization: Bearer <token>`` or ``X-API-Key:
<token>``. A configured static admin token is compared in constant time;
any other token is looked up by its sha256 digest. Plaintext tokens are
never stored or logged.

Routes declare what they need through dependencies:

    >>> @router.get("/api/projects", dependencies=[Depends(require_scopes("read"))])
    >>> @router.delete("/admin/tokens/{token_id}")
    ... async def revoke(auth: AuthContext = Depends(require_admin)): ...
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass, field

from fastapi import Depends, Request

from headless_pm.database.models.base import utc_now
from headless_pm.database.queries.activity import Actor
from headless_pm.database.queries.token import find_token_by_hash, touch_token
from headless_pm.errors import ForbiddenError, HeadlessPMError, UnauthorizedError
from headless_pm.logging import bind_caller_context, get_logger

logger = get_logger(__name__)

ADMIN_SCOPES = ("*",)
TOKEN_BYTES = 32


def hash_token(token: str) -> str:
    """sha256 hex digest of a plaintext token."""
    return hashlib.sha256(token.encode()).hexdigest()


def generate_token() -> str:
    """New 64-character hex token from 32 random bytes."""
    return secrets.token_hex(TOKEN_BYTES)


def parse_scopes(scopes: str | None) -> tuple[str, ...]:
    """Split a comma-separated scope string, dropping blanks."""
    if not scopes:
        return ()
    return tuple(s.strip() for s in scopes.split(",") if s.strip())


def has_scope(scopes: str | tuple[str, ...] | list[str], required: str) -> bool:
    """Whether a scope set grants ``required``.

    ``*`` and ``admin`` grant every scope.
    """
    granted = parse_scopes(scopes) if isinstance(scopes, str) else tuple(scopes)
    return "*" in granted or "admin" in granted or required in granted


@dataclass(frozen=True)
class AuthContext:
    """Identity attached to an authenticated request.

    Attributes:
        token_id: Id of the API token, None for the static admin token.
        user_id: User the token acts as, if any.
        user: Display name used in logs and activity rows.
        scopes: Granted scopes.
        is_admin: Whether the caller has admin rights.
    """

    token_id: int | None
    user_id: int | None
    user: str
    scopes: tuple[str, ...] = field(default_factory=tuple)
    is_admin: bool = False

    def has_scope(self, required: str) -> bool:
        return self.is_admin or has_scope(self.scopes, required)

    @property
    def actor(self) -> Actor:
        """Actor recorded on mutations made by this caller."""
        return Actor(user_id=self.user_id or 0, name=self.user)


def extract_token(request: Request) -> str | None:
    """Token presented by a request, if any."""
    authorization = request.headers.get("Authorization", "")
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    api_key = request.headers.get("X-API-Key", "").strip()
    return api_key or None


async def authenticate(request: Request) -> AuthContext:
    """Resolve the caller of a request.

    Raises:
        UnauthorizedError: If no token is presented, or the token is
            unknown, inactive or expired.
    """
    cached = getattr(request.state, "auth", None)
    if cached is not None:
        return cached

    token = extract_token(request)
    if token is None:
        raise UnauthorizedError("Missing authentication token")

    admin_token: str | None = request.app.state.config.admin_api_token
    if admin_token and hmac.compare_digest(token.encode(), admin_token.encode()):
        context = AuthContext(
            token_id=None,
            user_id=None,
            user="admin",
            scopes=ADMIN_SCOPES,
            is_admin=True,
        )
    else:
        context = await _authenticate_api_token(request, token)

    bind_caller_context(context.token_id, context.user)
    request.state.auth = context
    return context


async def _authenticate_api_token(request: Request, token: str) -> AuthContext:
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        record = await find_token_by_hash(session, hash_token(token))
        now = utc_now()
        if record is None or not record.is_active or (
            record.expires_at is not None and record.expires_at <= now
        ):
            logger.info("auth_token_rejected", token_id=record.id if record else None)
            raise UnauthorizedError("Invalid or expired token")

        context = AuthContext(
            token_id=record.id,
            user_id=record.user_id,
            user=f"token:{record.name}",
            scopes=parse_scopes(record.scopes),
            is_admin="admin" in parse_scopes(record.scopes),
        )
        try:
            await touch_token(session, record.id, now)
        except HeadlessPMError as e:
            logger.warning("auth_token_touch_failed", token_id=record.id, error=e.message)
    return context


def require_scopes(*scopes: str):
    """Dependency factory checking that the caller holds every scope.

    Raises (from the dependency):
        ForbiddenError: Naming the first missing scope.
    """

    async def dependency(auth: AuthContext = Depends(authenticate)) -> AuthContext:
        for scope in scopes:
            if not auth.has_scope(scope):
                logger.info("auth_scope_missing", token_id=auth.token_id, required_scope=scope)
                raise ForbiddenError("Insufficient permissions", required_scope=scope)
        return auth

    return dependency


async def require_admin(auth: AuthContext = Depends(authenticate)) -> AuthContext:
    """Dependency allowing only admin callers.

    Raises:
        ForbiddenError: If the caller is not an admin.
    """
    if not auth.is_admin:
        logger.info("auth_admin_required", token_id=auth.token_id)
        raise ForbiddenError("Admin access required")
    return auth
