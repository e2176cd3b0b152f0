"""User session management."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, delete, select

from tollgate.config import settings
from tollgate.models import User, UserSession
from tollgate.models.base import ensure_utc, utcnow
from tollgate.utils.crypto import digest_secret, generate_secret

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuedSession:
    """A freshly created session. ``session_id`` is the only copy of the raw id."""

    session_id: str
    user_id: str
    created_at: datetime
    expires_at: datetime | None


async def create_user_session(
    session: AsyncSession,
    user: User,
    *,
    ttl: timedelta | None = None,
    user_agent: str | None = None,
) -> IssuedSession:
    """Create a session for a user.

    Session ids carry 256 bits of entropy and their digest is the primary
    key, so concurrent sign-ins for one user always get distinct sessions.
    """
    ttl = ttl if ttl is not None else settings.session_ttl
    now = utcnow()
    session_id = generate_secret()
    record = UserSession(
        id=digest_secret(session_id),
        user_id=user.id,
        user_agent=user_agent[:512] if user_agent else None,
        created_at=now,
        expires_at=now + ttl if ttl is not None else None,
    )
    session.add(record)
    await session.flush()
    logger.info(f"Created session for user {user.id}")
    return IssuedSession(
        session_id=session_id,
        user_id=user.id,
        created_at=now,
        expires_at=record.expires_at,
    )


async def resolve_session(session: AsyncSession, session_id: str) -> User | None:
    """Return the user a session belongs to, or None if it is unknown, expired or revoked."""
    if not session_id:
        return None

    stmt = (
        select(UserSession, User)
        .join(User, col(User.id) == col(UserSession.user_id))
        .where(col(UserSession.id) == digest_secret(session_id))
    )
    result = await session.execute(stmt)
    row = result.first()
    if row is None:
        return None

    record, user = row
    if record.expires_at is not None and ensure_utc(record.expires_at) <= utcnow():
        return None
    return user


async def revoke_session(session: AsyncSession, session_id: str) -> None:
    """Delete a session. Unknown ids are ignored."""
    if not session_id:
        return
    await session.execute(
        delete(UserSession).where(col(UserSession.id) == digest_secret(session_id))
    )


async def revoke_user_sessions(
    session: AsyncSession,
    user_id: str,
    *,
    keep_session_id: str | None = None,
) -> int:
    """Delete all of a user's sessions, optionally keeping one.

    Returns:
        Number of sessions revoked
    """
    stmt = delete(UserSession).where(col(UserSession.user_id) == user_id)
    if keep_session_id:
        stmt = stmt.where(col(UserSession.id) != digest_secret(keep_session_id))
    result = await session.execute(stmt)
    revoked = result.rowcount or 0  # type: ignore[attr-defined]
    if revoked:
        logger.info(f"Revoked {revoked} session(s) for user {user_id}")
    return revoked


async def list_user_sessions(session: AsyncSession, user_id: str) -> list[UserSession]:
    """List a user's live sessions, newest first."""
    now = utcnow()
    stmt = (
        select(UserSession)
        .where(col(UserSession.user_id) == user_id)
        .order_by(col(UserSession.created_at).desc())
    )
    result = await session.execute(stmt)
    return [
        s for s in result.scalars().all()
        if s.expires_at is None or ensure_utc(s.expires_at) > now
    ]


async def sweep_expired_sessions(session: AsyncSession, *, now: datetime | None = None) -> int:
    """Delete expired sessions. Lookups reject them anyway; this is cleanup."""
    stmt = delete(UserSession).where(
        col(UserSession.expires_at).is_not(None),
        col(UserSession.expires_at) <= (now or utcnow()),
    ).execution_options(synchronize_session=False)
    result = await session.execute(stmt)
    return result.rowcount or 0  # type: ignore[attr-defined]
