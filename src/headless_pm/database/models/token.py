"""API token model for Headless PM.

Only the sha256 hex digest of a token is stored. The plaintext exists
solely in the response to the create call.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from headless_pm.database.models.base import Base, TimestampMixin


class APIToken(TimestampMixin, Base):
    """A bearer token used by programmatic and agent clients.

    Attributes:
        name: Human-readable label.
        token_hash: sha256 hex digest of the plaintext token.
        description: Optional free text.
        scopes: Comma-separated scope string such as ``read,write``.
        created_by: User id of the issuer (0 for the static admin token).
        user_id: Optional user the token acts as.
        expires_at: Optional expiry; revocation sets it to the revoke time.
        last_used: Timestamp of the last successful authentication.
        is_active: Whether the token may authenticate.
    """

    __tablename__ = "api_tokens"

    name: Mapped[str] = mapped_column(Text, nullable=False)
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    scopes: Mapped[str] = mapped_column(Text, nullable=False, default="read,write")
    created_by: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id"),
        nullable=True,
        index=True,
    )
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_used: Mapped[datetime | None] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def scope_list(self) -> list[str]:
        """Scopes as a trimmed list, empty entries removed."""
        return [s.strip() for s in self.scopes.split(",") if s.strip()]
