"""Session endpoints: sign in, sign out, and who am I."""

from datetime import datetime

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel, EmailStr

from tollgate.api.deps import CurrentIdentity, CurrentIdentityOptional, SessionDep, SignInRateLimit
from tollgate.config import settings
from tollgate.errors import ErrorBody
from tollgate.models import UserRead
from tollgate.services.identity import SESSION_COOKIE_NAME, ClientToken
from tollgate.services.sessions import (
    IssuedSession,
    create_user_session,
    list_user_sessions,
    revoke_session,
)
from tollgate.services.users import authenticate
from tollgate.utils.crypto import digest_secret

router = APIRouter()


class SignInRequest(BaseModel):
    """Request body for password sign-in."""

    email: EmailStr
    password: str


class SignInResponse(BaseModel):
    """Signed-in user plus the bearer credential for non-browser clients."""

    user: UserRead
    token: ClientToken


class SessionResponse(BaseModel):
    """Current session, ``user`` is null when anonymous."""

    user: UserRead | None = None


class SignOutResponse(BaseModel):
    message: str


class SessionInfo(BaseModel):
    id: str
    created_at: datetime
    expires_at: datetime | None
    user_agent: str | None
    current: bool


def set_session_cookie(response: Response, issued: IssuedSession) -> None:
    response.set_cookie(
        SESSION_COOKIE_NAME,
        issued.session_id,
        expires=issued.expires_at,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        path="/",
    )


@router.post(
    "/sign-in",
    response_model=SignInResponse,
    responses={401: {"model": ErrorBody}, 429: {"model": ErrorBody}},
)
async def sign_in(
    body: SignInRequest,
    request: Request,
    response: Response,
    session: SessionDep,
    _rate_limit: SignInRateLimit,
):
    """Sign in with email and password.

    Sets the session cookie and also returns the session id as a bearer token.
    """
    user = await authenticate(session, body.email, body.password)
    issued = await create_user_session(
        session, user, user_agent=request.headers.get("user-agent")
    )
    await session.commit()

    set_session_cookie(response, issued)
    return SignInResponse(
        user=UserRead.from_user(user),
        token=ClientToken(token=issued.session_id),
    )


@router.post("/sign-out", response_model=SignOutResponse)
async def sign_out(identity: CurrentIdentityOptional, response: Response, session: SessionDep):
    """Revoke the current session. Signing out twice is harmless."""
    if identity is not None:
        await revoke_session(session, identity.session_id)
        await session.commit()
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")
    return SignOutResponse(message="Signed out")


@router.get("/session", response_model=SessionResponse)
async def get_session_info(identity: CurrentIdentityOptional):
    """Return the signed-in user, or ``{"user": null}``."""
    if identity is None:
        return SessionResponse()
    return SessionResponse(user=UserRead.from_user(identity.user))


@router.get("/me", response_model=UserRead)
async def get_current_user_info(identity: CurrentIdentity):
    """Get current authenticated user info."""
    return UserRead.from_user(identity.user)


@router.get("/sessions", response_model=list[SessionInfo])
async def get_sessions(identity: CurrentIdentity, session: SessionDep):
    """List the caller's live sessions."""
    current = digest_secret(identity.session_id)
    records = await list_user_sessions(session, identity.user_id)
    return [
        SessionInfo(
            id=record.id,
            created_at=record.created_at,
            expires_at=record.expires_at,
            user_agent=record.user_agent,
            current=record.id == current,
        )
        for record in records
    ]
