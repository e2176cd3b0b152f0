"""Resolve the authenticated identity behind a request.

A request authenticates with exactly one credential: the session cookie or
an ``Authorization: Bearer`` header. Bearer values are session ids carried
in a different envelope, so both go through the same session store with the
same expiry and revocation rules.
"""

from dataclasses import dataclass
from typing import Literal

from fastapi import Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from tollgate.errors import Unauthenticated
from tollgate.models import User
from tollgate.services.sessions import resolve_session

SESSION_COOKIE_NAME = "tollgate_session"

CredentialSource = Literal["cookie", "bearer"]


@dataclass(frozen=True)
class Credential:
    """The single credential honored for a request."""

    source: CredentialSource
    value: str


@dataclass(frozen=True)
class RequestIdentity:
    """Authenticated caller, passed explicitly to every handler that needs it."""

    user: User
    session_id: str
    source: CredentialSource

    @property
    def user_id(self) -> str:
        return self.user.id


class ClientToken(BaseModel):
    """Bearer credential handed to non-browser clients.

    ``refresh`` is returned empty and accepted as an opaque value; sessions
    are not rotated.
    """

    token: str
    refresh: str = ""


def credential_from_request(request: Request) -> Credential | None:
    """Pick the credential to honor. The session cookie wins over a bearer header."""
    cookie = request.cookies.get(SESSION_COOKIE_NAME)
    if cookie:
        return Credential(source="cookie", value=cookie)

    authorization = request.headers.get("authorization", "")
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return Credential(source="bearer", value=value.strip())

    return None


async def resolve_identity(
    session: AsyncSession,
    credential: Credential | None,
) -> RequestIdentity | None:
    """Resolve a credential to the current identity, or None if unauthenticated."""
    if credential is None:
        return None

    user = await resolve_session(session, credential.value)
    if user is None:
        return None
    return RequestIdentity(user=user, session_id=credential.value, source=credential.source)


async def require_identity(
    session: AsyncSession,
    credential: Credential | None,
) -> RequestIdentity:
    """Like resolve_identity, but raise Unauthenticated instead of returning None."""
    identity = await resolve_identity(session, credential)
    if identity is None:
        raise Unauthenticated()
    return identity
