"""User and login-session models for Headless PM.

Interactive login flows are not served by this backend, but session and
refresh-token rows created by other front ends are removed together with
their user.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from headless_pm.database.models.base import Base, TimestampMixin


class UserRole(enum.Enum):
    """Coarse permission roles."""

    admin = "admin"
    manager = "manager"
    member = "member"
    viewer = "viewer"


class User(TimestampMixin, Base):
    """A person tasks can be assigned to.

    Attributes:
        username: Unique login name.
        email: Unique e-mail address.
        password_hash: Hashed password (never the plaintext).
        full_name: Display name.
        role: Permission role.
        is_active: Whether the account may be used.
    """

    __tablename__ = "users"

    username: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False, default="")
    full_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    role: Mapped[UserRole] = mapped_column(default=UserRole.member, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    @property
    def display_name(self) -> str:
        return self.full_name or self.username


class AuthSession(TimestampMixin, Base):
    """Login session issued to a user by an interactive front end."""

    __tablename__ = "sessions"

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    token: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)


class RefreshToken(TimestampMixin, Base):
    """Refresh token paired with an AuthSession."""

    __tablename__ = "refresh_tokens"

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    token: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    revoked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
