"""Request identity resolution tests."""

import pytest
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from tollgate.errors import Unauthenticated
from tollgate.models import User
from tollgate.services.identity import (
    SESSION_COOKIE_NAME,
    ClientToken,
    Credential,
    credential_from_request,
    require_identity,
    resolve_identity,
)
from tollgate.services.sessions import IssuedSession, create_user_session, revoke_session
from tollgate.services.users import create_user


def make_request(headers: dict[str, str]) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
    }
    return Request(scope)


class TestCredentialFromRequest:
    """Tests for picking the credential a request carries."""

    def test_cookie(self):
        request = make_request({"Cookie": f"{SESSION_COOKIE_NAME}=abc"})
        assert credential_from_request(request) == Credential(source="cookie", value="abc")

    def test_bearer(self):
        request = make_request({"Authorization": "Bearer xyz"})
        assert credential_from_request(request) == Credential(source="bearer", value="xyz")

    def test_bearer_scheme_is_case_insensitive(self):
        request = make_request({"Authorization": "bearer xyz"})
        assert credential_from_request(request) == Credential(source="bearer", value="xyz")

    def test_cookie_wins_over_bearer(self):
        request = make_request(
            {"Cookie": f"{SESSION_COOKIE_NAME}=abc", "Authorization": "Bearer xyz"}
        )
        assert credential_from_request(request) == Credential(source="cookie", value="abc")

    def test_no_credential(self):
        assert credential_from_request(make_request({})) is None

    def test_other_schemes_ignored(self):
        request = make_request({"Authorization": "Basic dXNlcjpwYXNz"})
        assert credential_from_request(request) is None

    def test_empty_bearer_ignored(self):
        assert credential_from_request(make_request({"Authorization": "Bearer "})) is None


class TestResolveIdentity:
    """Tests for resolve_identity and require_identity."""

    @pytest.mark.asyncio
    async def test_bearer_identity(
        self, session: AsyncSession, user: User, user_session: IssuedSession
    ):
        identity = await resolve_identity(
            session, Credential(source="bearer", value=user_session.session_id)
        )

        assert identity is not None
        assert identity.user_id == user.id
        assert identity.session_id == user_session.session_id
        assert identity.source == "bearer"

    @pytest.mark.asyncio
    async def test_cookie_and_bearer_share_sessions(
        self, session: AsyncSession, user: User, user_session: IssuedSession
    ):
        """The same session id authenticates in either envelope."""
        via_cookie = await resolve_identity(
            session, Credential(source="cookie", value=user_session.session_id)
        )
        via_bearer = await resolve_identity(
            session, Credential(source="bearer", value=user_session.session_id)
        )

        assert via_cookie is not None and via_bearer is not None
        assert via_cookie.user_id == via_bearer.user_id == user.id

    @pytest.mark.asyncio
    async def test_no_credential(self, session: AsyncSession):
        assert await resolve_identity(session, None) is None

    @pytest.mark.asyncio
    async def test_revoked_session(
        self, session: AsyncSession, user: User, user_session: IssuedSession
    ):
        await revoke_session(session, user_session.session_id)

        credential = Credential(source="bearer", value=user_session.session_id)
        assert await resolve_identity(session, credential) is None

    @pytest.mark.asyncio
    async def test_identities_are_per_session(self, session: AsyncSession, user: User):
        """Two users signed in at once each resolve to themselves."""
        bob = await create_user(session, name="Bob", email="bob@example.com")
        alice_session = await create_user_session(session, user)
        bob_session = await create_user_session(session, bob)

        alice = await resolve_identity(
            session, Credential(source="cookie", value=alice_session.session_id)
        )
        other = await resolve_identity(
            session, Credential(source="cookie", value=bob_session.session_id)
        )

        assert alice is not None and other is not None
        assert alice.user_id == user.id
        assert other.user_id == bob.id

    @pytest.mark.asyncio
    async def test_require_identity(self, session: AsyncSession, user_session: IssuedSession):
        identity = await require_identity(
            session, Credential(source="bearer", value=user_session.session_id)
        )
        assert identity.session_id == user_session.session_id

        with pytest.raises(Unauthenticated):
            await require_identity(session, Credential(source="bearer", value="bogus"))
        with pytest.raises(Unauthenticated):
            await require_identity(session, None)


def test_client_token_refresh_defaults_empty():
    token = ClientToken(token="abc")
    assert token.model_dump() == {"token": "abc", "refresh": ""}
