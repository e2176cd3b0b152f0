"""Session store tests."""

from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from tollgate.config import settings
from tollgate.models import User, UserSession
from tollgate.models.base import utcnow
from tollgate.services.sessions import (
    create_user_session,
    list_user_sessions,
    resolve_session,
    revoke_session,
    revoke_user_sessions,
    sweep_expired_sessions,
)
from tollgate.services.users import create_user
from tollgate.utils.crypto import digest_secret


class TestCreateSession:
    """Tests for create_user_session."""

    @pytest.mark.asyncio
    async def test_session_resolves_to_user(self, session: AsyncSession, user: User):
        issued = await create_user_session(session, user)

        assert issued.user_id == user.id
        resolved = await resolve_session(session, issued.session_id)
        assert resolved is not None
        assert resolved.id == user.id

    @pytest.mark.asyncio
    async def test_stores_digest(self, session: AsyncSession, user: User):
        issued = await create_user_session(session, user)

        assert await session.get(UserSession, issued.session_id) is None
        assert await session.get(UserSession, digest_secret(issued.session_id)) is not None

    @pytest.mark.asyncio
    async def test_sessions_are_distinct(self, session: AsyncSession, user: User):
        """Signing in twice yields two independent sessions."""
        first = await create_user_session(session, user)
        second = await create_user_session(session, user)

        assert first.session_id != second.session_id
        await revoke_session(session, first.session_id)
        assert await resolve_session(session, first.session_id) is None
        assert await resolve_session(session, second.session_id) is not None

    @pytest.mark.asyncio
    async def test_default_ttl(self, session: AsyncSession, user: User):
        issued = await create_user_session(session, user)

        assert issued.expires_at is not None
        expected = issued.created_at + timedelta(days=settings.session_ttl_days)
        assert issued.expires_at == expected

    @pytest.mark.asyncio
    async def test_no_expiry_when_ttl_disabled(
        self, session: AsyncSession, user: User, monkeypatch
    ):
        monkeypatch.setattr(settings, "session_ttl_days", None)

        issued = await create_user_session(session, user)

        assert issued.expires_at is None
        assert await resolve_session(session, issued.session_id) is not None

    @pytest.mark.asyncio
    async def test_truncates_user_agent(self, session: AsyncSession, user: User):
        issued = await create_user_session(session, user, user_agent="x" * 1000)

        record = await session.get(UserSession, digest_secret(issued.session_id))
        assert record is not None
        assert len(record.user_agent or "") == 512


class TestResolveSession:
    """Tests for resolve_session."""

    @pytest.mark.asyncio
    async def test_unknown_session(self, session: AsyncSession, user: User):
        assert await resolve_session(session, "nope") is None

    @pytest.mark.asyncio
    async def test_empty_session_id(self, session: AsyncSession, user: User):
        assert await resolve_session(session, "") is None

    @pytest.mark.asyncio
    async def test_expired_session(self, session: AsyncSession, user: User):
        issued = await create_user_session(session, user, ttl=timedelta(seconds=-1))

        assert await resolve_session(session, issued.session_id) is None


class TestRevokeSessions:
    """Tests for revocation and listing."""

    @pytest.mark.asyncio
    async def test_revoke_is_idempotent(self, session: AsyncSession, user: User):
        issued = await create_user_session(session, user)

        await revoke_session(session, issued.session_id)
        await revoke_session(session, issued.session_id)

        assert await resolve_session(session, issued.session_id) is None

    @pytest.mark.asyncio
    async def test_revoke_user_sessions_keeps_current(self, session: AsyncSession, user: User):
        current = await create_user_session(session, user)
        other = await create_user_session(session, user)
        stranger = await create_user(session, name="Bob", email="bob@example.com")
        unrelated = await create_user_session(session, stranger)

        revoked = await revoke_user_sessions(session, user.id, keep_session_id=current.session_id)

        assert revoked == 1
        assert await resolve_session(session, current.session_id) is not None
        assert await resolve_session(session, other.session_id) is None
        assert await resolve_session(session, unrelated.session_id) is not None

    @pytest.mark.asyncio
    async def test_revoke_all_user_sessions(self, session: AsyncSession, user: User):
        sessions = [await create_user_session(session, user) for _ in range(3)]

        assert await revoke_user_sessions(session, user.id) == 3
        for issued in sessions:
            assert await resolve_session(session, issued.session_id) is None

    @pytest.mark.asyncio
    async def test_list_user_sessions(self, session: AsyncSession, user: User):
        older = await create_user_session(session, user)
        newer = await create_user_session(session, user)
        await create_user_session(session, user, ttl=timedelta(seconds=-1))

        listed = await list_user_sessions(session, user.id)

        assert [s.id for s in listed] == [
            digest_secret(newer.session_id),
            digest_secret(older.session_id),
        ]

    @pytest.mark.asyncio
    async def test_sweep_expired_sessions(self, session: AsyncSession, user: User):
        live = await create_user_session(session, user)
        await create_user_session(session, user, ttl=timedelta(seconds=-1))
        await create_user_session(session, user, ttl=timedelta(days=-3))

        deleted = await sweep_expired_sessions(session, now=utcnow())

        assert deleted == 2
        assert await resolve_session(session, live.session_id) is not None
