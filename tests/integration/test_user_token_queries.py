"""Integration tests for user and API token query functions."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from headless_pm.database.models.base import utc_now
from headless_pm.database.models.user import UserRole
from headless_pm.database.queries import token as token_queries
from headless_pm.database.queries import user as user_queries
from headless_pm.database.queries.project import create_project, get_project
from headless_pm.database.queries.task import create_task, get_task
from headless_pm.errors import DuplicateEntryError, InvalidInputError, NotFoundError
from headless_pm.web.auth import hash_token


class TestPasswords:
    def test_hash_and_verify(self) -> None:
        encoded = user_queries.hash_password("hunter2")
        assert encoded.startswith("$2b$")
        assert user_queries.verify_password("hunter2", encoded)
        assert not user_queries.verify_password("hunter3", encoded)

    def test_salted(self) -> None:
        assert user_queries.hash_password("same") != user_queries.hash_password("same")

    @pytest.mark.parametrize("encoded", ["", "plain", "md5$1$salt$abc"])
    def test_unusable_hash(self, encoded: str) -> None:
        assert user_queries.verify_password("x", encoded) is False

    @pytest.mark.asyncio
    async def test_overlong_password_rejected(self, db_session: AsyncSession) -> None:
        with pytest.raises(InvalidInputError) as exc_info:
            await user_queries.create_user(db_session, "ada", "ada@example.com", password="x" * 73)
        assert exc_info.value.field == "password"


class TestUsers:
    """User creation, lookup and removal."""

    @pytest.mark.asyncio
    async def test_create(self, db_session: AsyncSession) -> None:
        user = await user_queries.create_user(
            db_session, "ada", "ada@example.com", password="pw", role="admin"
        )
        assert user.role == UserRole.admin
        assert user.is_active is True
        assert user.password_hash != "pw"
        assert (await user_queries.get_user_by_username(db_session, "ada")).id == user.id

    @pytest.mark.asyncio
    async def test_duplicates_name_the_field(self, db_session: AsyncSession) -> None:
        await user_queries.create_user(db_session, "ada", "ada@example.com")
        with pytest.raises(DuplicateEntryError) as by_name:
            await user_queries.create_user(db_session, "ada", "other@example.com")
        assert by_name.value.field == "username"
        with pytest.raises(DuplicateEntryError) as by_email:
            await user_queries.create_user(db_session, "bob", "ada@example.com")
        assert by_email.value.field == "email"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("username", "email", "role"),
        [(" ", "a@example.com", "member"), ("ada", "not-an-email", "member"), ("ada", "a@b", "boss")],
    )
    async def test_invalid(
        self, db_session: AsyncSession, username: str, email: str, role: str
    ) -> None:
        with pytest.raises(InvalidInputError):
            await user_queries.create_user(db_session, username, email, role=role)

    @pytest.mark.asyncio
    async def test_delete_keeps_work(self, db_session: AsyncSession) -> None:
        user = await user_queries.create_user(db_session, "ada", "ada@example.com")
        project = await create_project(db_session, name="Apollo", owner_id=user.id)
        task = await create_task(db_session, project.id, "Ship", assignee_id=user.id)
        await token_queries.create_api_token(
            db_session, "ada-cli", hash_token("hpm_ada"), user_id=user.id
        )

        await user_queries.delete_user(db_session, user.id)

        assert await user_queries.get_user(db_session, user.id) is None
        kept = await get_task(db_session, task.id)
        await db_session.refresh(kept)
        assert kept.assignee_id is None
        assert kept.assignee is None
        owned = await get_project(db_session, project.id)
        await db_session.refresh(owned)
        assert owned.owner_id is None
        assert await token_queries.list_api_tokens(db_session) == []

    @pytest.mark.asyncio
    async def test_delete_missing(self, db_session: AsyncSession) -> None:
        with pytest.raises(NotFoundError):
            await user_queries.delete_user(db_session, 404)


class TestTokens:
    """Token storage, lookup, revocation and last-used stamps."""

    @pytest.mark.asyncio
    async def test_create_and_find(self, db_session: AsyncSession) -> None:
        token = await token_queries.create_api_token(
            db_session, " ci ", hash_token("hpm_secret"), scopes="read"
        )
        assert token.name == "ci"
        assert token.scope_list() == ["read"]
        found = await token_queries.find_token_by_hash(db_session, hash_token("hpm_secret"))
        assert found.id == token.id
        assert await token_queries.find_token_by_hash(db_session, hash_token("hpm_other")) is None

    @pytest.mark.asyncio
    async def test_blank_name(self, db_session: AsyncSession) -> None:
        with pytest.raises(InvalidInputError):
            await token_queries.create_api_token(db_session, "", hash_token("x"))

    @pytest.mark.asyncio
    async def test_hash_is_unique(self, db_session: AsyncSession) -> None:
        await token_queries.create_api_token(db_session, "a", hash_token("same"))
        with pytest.raises(DuplicateEntryError):
            await token_queries.create_api_token(db_session, "b", hash_token("same"))

    @pytest.mark.asyncio
    async def test_list_newest_first(self, db_session: AsyncSession) -> None:
        first = await token_queries.create_api_token(db_session, "a", hash_token("a"))
        second = await token_queries.create_api_token(db_session, "b", hash_token("b"))
        assert [t.id for t in await token_queries.list_api_tokens(db_session)] == [
            second.id,
            first.id,
        ]

    @pytest.mark.asyncio
    async def test_revoke_sets_expiry(self, db_session: AsyncSession) -> None:
        token = await token_queries.create_api_token(db_session, "a", hash_token("a"))
        before = utc_now()
        revoked = await token_queries.revoke_api_token(db_session, token.id)
        assert revoked.expires_at is not None
        assert revoked.expires_at >= before
        with pytest.raises(NotFoundError):
            await token_queries.revoke_api_token(db_session, 404)

    @pytest.mark.asyncio
    async def test_touch_strictly_increases(self, db_session: AsyncSession) -> None:
        token = await token_queries.create_api_token(db_session, "a", hash_token("a"))
        when = utc_now()
        first = await token_queries.touch_token(db_session, token.id, when)
        second = await token_queries.touch_token(db_session, token.id, when)
        earlier = await token_queries.touch_token(
            db_session, token.id, when - timedelta(minutes=5)
        )
        assert first == when
        assert first < second < earlier

    @pytest.mark.asyncio
    async def test_touch_missing(self, db_session: AsyncSession) -> None:
        with pytest.raises(NotFoundError):
            await token_queries.touch_token(db_session, 404)
