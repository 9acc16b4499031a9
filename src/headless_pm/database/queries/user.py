"""User query functions for Headless PM.

Deleting a user keeps their tasks: assignee references and ``updated_by``
are cleared, ``created_by`` falls back to the 0 sentinel, and owned
projects lose their owner.
"""

from __future__ import annotations

import bcrypt
import structlog
from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from headless_pm.database.connection import transaction
from headless_pm.database.models.project import Project, project_members
from headless_pm.database.models.task import Task, task_watchers
from headless_pm.database.models.token import APIToken
from headless_pm.database.models.user import AuthSession, RefreshToken, User, UserRole
from headless_pm.errors import DuplicateEntryError, InvalidInputError, NotFoundError

logger = structlog.get_logger(__name__)

BCRYPT_ROUNDS = 12
# bcrypt only reads this many bytes of a password
MAX_PASSWORD_BYTES = 72


def hash_password(password: str) -> str:
    """Hash a password with a fresh bcrypt salt."""
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a stored bcrypt hash; unusable hashes never match."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def parse_role(value: UserRole | str) -> UserRole:
    """Coerce a role name into UserRole.

    Raises:
        InvalidInputError: If the name is not a known role.
    """
    if isinstance(value, UserRole):
        return value
    try:
        return UserRole(value)
    except ValueError:
        raise InvalidInputError(f"Invalid role: {value}", field="role") from None


async def create_user(
    session: AsyncSession,
    username: str,
    email: str,
    password: str | None = None,
    full_name: str | None = None,
    role: UserRole | str = UserRole.member,
) -> User:
    """Create a user.

    Args:
        session: Active async database session.
        username: Unique login name.
        email: Unique e-mail address.
        password: Optional password; stored hashed.
        full_name: Optional display name.
        role: Permission role (default member).

    Returns:
        The new User.

    Raises:
        InvalidInputError: On blank username/email, unknown role or an overlong password.
        DuplicateEntryError: If the username or email is taken.
    """
    if not username or not username.strip():
        raise InvalidInputError("username is required", field="username")
    if not email or "@" not in email:
        raise InvalidInputError("A valid email is required", field="email")
    if password is not None and len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise InvalidInputError(
            f"password must be at most {MAX_PASSWORD_BYTES} bytes", field="password"
        )
    user_role = parse_role(role)

    async with transaction(session):
        existing = await session.execute(
            select(User.username, User.email).where(or_(User.username == username, User.email == email))
        )
        row = existing.first()
        if row is not None:
            taken = "username" if row.username == username else "email"
            raise DuplicateEntryError(f"A user with this {taken} already exists", field=taken)

        user = User(
            username=username.strip(),
            email=email,
            password_hash=hash_password(password) if password else "",
            full_name=full_name,
            role=user_role,
            is_active=True,
        )
        session.add(user)
        await session.flush()
        await session.refresh(user)

    logger.info("user_created", user_id=user.id, username=user.username, role=user_role.value)
    return user


async def get_user(session: AsyncSession, user_id: int) -> User | None:
    """Retrieve a user by ID."""
    return await session.get(User, user_id)


async def get_user_by_username(session: AsyncSession, username: str) -> User | None:
    """Retrieve a user by username."""
    result = await session.execute(select(User).where(User.username == username))
    return result.scalar_one_or_none()


async def list_users(session: AsyncSession, active_only: bool = False) -> list[User]:
    """List users in id order."""
    stmt = select(User)
    if active_only:
        stmt = stmt.where(User.is_active.is_(True))
    result = await session.execute(stmt.order_by(User.id))
    return list(result.scalars().all())


async def delete_user(session: AsyncSession, user_id: int) -> None:
    """Delete a user while keeping the work they touched.

    Raises:
        NotFoundError: If the user does not exist.
    """
    async with transaction(session):
        user = await session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found", field="user_id")

        await session.execute(
            update(Task).where(Task.assignee_id == user_id).values(assignee_id=None, assignee=None)
        )
        await session.execute(delete(task_watchers).where(task_watchers.c.user_id == user_id))
        await session.execute(delete(project_members).where(project_members.c.user_id == user_id))
        await session.execute(update(Task).where(Task.created_by == user_id).values(created_by=0))
        await session.execute(update(Task).where(Task.updated_by == user_id).values(updated_by=None))
        await session.execute(update(Project).where(Project.owner_id == user_id).values(owner_id=None))
        await session.execute(delete(AuthSession).where(AuthSession.user_id == user_id))
        await session.execute(delete(RefreshToken).where(RefreshToken.user_id == user_id))
        await session.execute(delete(APIToken).where(APIToken.user_id == user_id))
        await session.delete(user)

    logger.info("user_deleted", user_id=user_id)
