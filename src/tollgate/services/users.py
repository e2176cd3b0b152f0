"""User identity store."""

import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from tollgate.errors import EmailAlreadyInUse, InvalidCredentials
from tollgate.models import User
from tollgate.models.user import normalize_email
from tollgate.services.passwords import check_password

logger = logging.getLogger(__name__)


async def get_user(session: AsyncSession, user_id: str) -> User | None:
    """Fetch a user by ID."""
    return await session.get(User, user_id)


async def get_user_by_email(session: AsyncSession, email: str) -> User | None:
    """Fetch a user by email, ignoring case."""
    stmt = select(User).where(User.email == normalize_email(email))
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def create_user(
    session: AsyncSession,
    *,
    name: str,
    email: str,
    password_hash: str | None = None,
    email_verified_at: datetime | None = None,
    avatar_url: str | None = None,
) -> User:
    """Create a user.

    Args:
        session: Database session
        name: Display name
        email: Email address, stored lower-cased
        password_hash: Already-hashed password, or None for a passwordless account
        email_verified_at: When the address was verified, if it has been
        avatar_url: Optional avatar image URL

    Returns:
        The flushed User

    Raises:
        EmailAlreadyInUse: if another account owns the address
    """
    email = normalize_email(email)
    if await get_user_by_email(session, email):
        raise EmailAlreadyInUse()

    user = User(
        name=name,
        email=email,
        password_hash=password_hash,
        email_verified_at=email_verified_at,
        avatar_url=avatar_url,
    )
    session.add(user)
    try:
        await session.flush()
    except IntegrityError as e:
        raise EmailAlreadyInUse() from e

    logger.info(f"Created user {user.id}")
    return user


async def authenticate(session: AsyncSession, email: str, password: str) -> User:
    """Check an email/password pair and return the matching user."""
    user = await get_user_by_email(session, email)
    password_hash = user.password_hash if user else None
    if not await check_password(password, password_hash) or user is None:
        raise InvalidCredentials()
    return user
