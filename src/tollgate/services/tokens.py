"""Single-use verification tokens.

Tokens are stored by digest and consumed with one conditional UPDATE, so a
token can authorize at most one action even when several requests race to
use it. None of these functions commit: callers own the transaction, which
lets a consume roll back together with the change it authorized.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, delete, select

from tollgate.errors import (
    PurposeMismatch,
    TokenAlreadyUsed,
    TokenExpired,
    TokenNotFound,
    UserNotFound,
)
from tollgate.models import TokenPurpose, User, VerificationToken
from tollgate.models.base import ensure_utc, utcnow
from tollgate.models.verification_token import TokenPayload, load_payload, token_payload_adapter
from tollgate.utils.crypto import digest_secret, generate_secret

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConsumedToken:
    """What a successfully consumed token authorized."""

    user_id: str
    payload: TokenPayload

    @property
    def purpose(self) -> TokenPurpose:
        return self.payload.purpose


def _purpose_values(purpose: TokenPurpose | Iterable[TokenPurpose]) -> list[str]:
    if isinstance(purpose, TokenPurpose):
        return [purpose.value]
    return [TokenPurpose(p).value for p in purpose]


async def invalidate_tokens(
    session: AsyncSession,
    user_id: str,
    purpose: TokenPurpose,
    *,
    now: datetime | None = None,
) -> int:
    """Mark every unconsumed token of a user and purpose as spent.

    Invalidated tokens are indistinguishable from used ones afterwards; they
    authorize nothing.
    """
    stmt = (
        update(VerificationToken)
        .where(
            col(VerificationToken.user_id) == user_id,
            col(VerificationToken.purpose) == purpose.value,
            col(VerificationToken.consumed_at).is_(None),
        )
        .values(consumed_at=now or utcnow())
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount or 0  # type: ignore[attr-defined]


async def issue_token(
    session: AsyncSession,
    purpose: TokenPurpose,
    user_id: str,
    ttl: timedelta,
    payload: TokenPayload | None = None,
) -> str:
    """Issue a new token, replacing any active token for the same user and purpose.

    Args:
        session: Database session
        purpose: Action the token authorizes
        user_id: Subject user
        ttl: Lifetime from now; a negative ttl yields an already-expired token
        payload: Typed payload for the purpose (defaults to the empty payload)

    Returns:
        The raw token value. Only its digest is persisted.
    """
    if payload is None:
        payload = token_payload_adapter.validate_python({"purpose": purpose})
    if payload.purpose != purpose:
        raise ValueError(f"Payload for {payload.purpose.value} cannot be issued as {purpose.value}")

    # Serialize issuers for this user so two requests can't both leave a live token
    locked = await session.execute(
        select(User.id).where(col(User.id) == user_id).with_for_update()
    )
    if locked.scalar_one_or_none() is None:
        raise UserNotFound()

    now = utcnow()
    replaced = await invalidate_tokens(session, user_id, purpose, now=now)
    if replaced:
        logger.info(f"Invalidated {replaced} pending {purpose.value} token(s) for user {user_id}")

    token = generate_secret()
    session.add(
        VerificationToken(
            id=digest_secret(token),
            purpose=purpose.value,
            user_id=user_id,
            payload=payload.model_dump(mode="json", exclude={"purpose"}),
            created_at=now,
            expires_at=now + ttl,
        )
    )
    await session.flush()
    logger.info(f"Issued {purpose.value} token for user {user_id}")
    return token


def _check_token(
    record: VerificationToken | None,
    purposes: list[str],
    user_id: str | None,
    now: datetime,
) -> VerificationToken:
    """Return the record if it is usable, else raise the error saying why not."""
    # A token bound to another user is reported as unknown
    if record is None or (user_id is not None and record.user_id != user_id):
        raise TokenNotFound()
    if record.purpose not in purposes:
        raise PurposeMismatch()
    if record.consumed_at is not None:
        raise TokenAlreadyUsed()
    if now > ensure_utc(record.expires_at):
        raise TokenExpired()
    return record


async def _load_token(session: AsyncSession, token: str) -> VerificationToken | None:
    stmt = (
        select(VerificationToken)
        .where(col(VerificationToken.id) == digest_secret(token))
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def consume_token(
    session: AsyncSession,
    token: str,
    purpose: TokenPurpose | Iterable[TokenPurpose],
    *,
    user_id: str | None = None,
) -> ConsumedToken:
    """Consume a token and return its subject and payload.

    The check and the write happen in a single conditional UPDATE, so of
    several concurrent callers exactly one succeeds.

    Args:
        session: Database session (not committed here)
        token: Raw token value
        purpose: Accepted purpose, or several accepted purposes
        user_id: When given, the token must belong to this user

    Raises:
        TokenNotFound, PurposeMismatch, TokenAlreadyUsed, TokenExpired
    """
    purposes = _purpose_values(purpose)
    now = utcnow()

    stmt = (
        update(VerificationToken)
        .where(
            col(VerificationToken.id) == digest_secret(token),
            col(VerificationToken.purpose).in_(purposes),
            col(VerificationToken.consumed_at).is_(None),
            col(VerificationToken.expires_at) >= now,
        )
        .values(consumed_at=now)
        .returning(
            col(VerificationToken.user_id),
            col(VerificationToken.purpose),
            col(VerificationToken.payload),
        )
        .execution_options(synchronize_session=False)
    )
    if user_id is not None:
        stmt = stmt.where(col(VerificationToken.user_id) == user_id)

    row = (await session.execute(stmt)).first()
    if row is None:
        record = await _load_token(session, token)
        _check_token(record, purposes, user_id, now)
        # Valid on re-read means another request consumed it between the two statements
        raise TokenAlreadyUsed()

    return ConsumedToken(user_id=row.user_id, payload=load_payload(row.purpose, row.payload))


async def peek_token(
    session: AsyncSession,
    token: str,
    purpose: TokenPurpose | Iterable[TokenPurpose],
    *,
    user_id: str | None = None,
) -> ConsumedToken:
    """Validate a token without consuming it."""
    purposes = _purpose_values(purpose)
    record = _check_token(await _load_token(session, token), purposes, user_id, utcnow())
    return ConsumedToken(user_id=record.user_id, payload=load_payload(record.purpose, record.payload))


async def sweep_expired_tokens(
    session: AsyncSession,
    retention: timedelta,
    *,
    now: datetime | None = None,
) -> int:
    """Delete tokens that expired or were spent longer ago than ``retention``.

    Expired tokens are rejected at consume time regardless; this only keeps
    the table small.
    """
    cutoff = (now or utcnow()) - retention
    stmt = delete(VerificationToken).where(
        or_(
            col(VerificationToken.expires_at) < cutoff,
            col(VerificationToken.consumed_at) < cutoff,
        )
    ).execution_options(synchronize_session=False)
    result = await session.execute(stmt)
    return result.rowcount or 0  # type: ignore[attr-defined]
