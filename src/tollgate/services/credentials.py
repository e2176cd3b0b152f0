"""Email and password change workflows.

Email change runs request -> verify -> commit across three calls:

1. ``send_change_email`` mails a change_email token to the current address.
2. ``send_verify_change_email`` spends that token and mails a
   verify_new_email token, carrying the target address, to the new address.
3. ``change_email`` spends the second token and moves the account.

Password changes are request -> commit: a set_password or change_password
token is mailed, then spent by ``change_password``.

Each step runs inside ``atomic``: token consumption and the user mutation
commit together or not at all. Emails go out only after the commit, so a
delivery failure leaves the freshly issued token valid until a resend
replaces it.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator, Awaitable
from contextlib import asynccontextmanager
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tollgate.config import settings
from tollgate.errors import (
    CommitFailed,
    DeliveryFailed,
    EmailAlreadyInUse,
    InvalidCallbackUrl,
    InvalidPassword,
    PayloadMismatch,
    PurposeMismatch,
    UserNotFound,
)
from tollgate.models import TokenPurpose, User
from tollgate.models.base import utcnow
from tollgate.models.user import normalize_email
from tollgate.models.verification_token import VerifyEmailPayload, VerifyNewEmailPayload
from tollgate.services.email import EmailService, email_service
from tollgate.services.identity import RequestIdentity
from tollgate.services.passwords import hash_password
from tollgate.services.sessions import revoke_user_sessions
from tollgate.services.tokens import consume_token, invalidate_tokens, issue_token
from tollgate.services.users import get_user, get_user_by_email

logger = logging.getLogger(__name__)

PASSWORD_TOKEN_PURPOSES = (TokenPurpose.SET_PASSWORD, TokenPurpose.CHANGE_PASSWORD)


@asynccontextmanager
async def atomic(session: AsyncSession) -> AsyncGenerator[None, None]:
    """Transactional boundary for one workflow step.

    Commits when the block succeeds and rolls back on any error, timeout or
    cancellation. Storage errors and timeouts surface as CommitFailed so the
    client can start over with a fresh request.
    """
    try:
        async with asyncio.timeout(settings.operation_timeout_seconds):
            yield
            await session.commit()
    except TimeoutError as e:
        await session.rollback()
        logger.warning("Credential change timed out, rolled back")
        raise CommitFailed("Operation timed out, please try again") from e
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Credential change failed to commit: {e!r}")
        raise CommitFailed() from e
    except BaseException:
        await session.rollback()
        raise


def _origin(url: str) -> tuple[str, str]:
    parts = urlsplit(url)
    return parts.scheme.lower(), parts.netloc.lower()


def resolve_callback_url(callback_url: str) -> str:
    """Make a callback URL absolute and check it points back at the app.

    Relative paths are resolved against ``app_url``. Absolute URLs must share
    an origin with ``app_url`` or one of ``cors_origins``.
    """
    url = urljoin(settings.app_url + "/", callback_url.strip())
    scheme, netloc = _origin(url)
    if scheme not in ("http", "https") or not netloc:
        raise InvalidCallbackUrl()

    allowed = {_origin(settings.app_url), *(_origin(o) for o in settings.cors_origins)}
    if (scheme, netloc) not in allowed:
        raise InvalidCallbackUrl()
    return url


def with_query(url: str, **params: str) -> str:
    """Append query parameters to a URL, keeping any it already has."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True) + list(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


def validate_password(password: str) -> None:
    if not settings.password_min_length <= len(password) <= settings.password_max_length:
        raise InvalidPassword(
            f"Password must be between {settings.password_min_length} and "
            f"{settings.password_max_length} characters"
        )


class CredentialChangeWorkflow:
    """Token-gated email and password changes."""

    def __init__(self, emails: EmailService | None = None):
        self._emails = emails

    @property
    def emails(self) -> EmailService:
        return self._emails or email_service

    async def _deliver(self, sent: Awaitable[bool], kind: str, user_id: str) -> None:
        if not await sent:
            logger.error(f"Failed to deliver {kind} email for user {user_id}")
            raise DeliveryFailed()

    # Email change

    async def send_change_email(
        self,
        session: AsyncSession,
        identity: RequestIdentity,
        email: str | None,
        callback_url: str,
    ) -> bool:
        """Start an email change by confirming with the current address.

        ``email`` is accepted for client compatibility only; the link always
        goes to the address the account has now.
        """
        callback = resolve_callback_url(callback_url)
        user = identity.user

        async with atomic(session):
            token = await issue_token(
                session,
                TokenPurpose.CHANGE_EMAIL,
                user.id,
                settings.token_ttl(TokenPurpose.CHANGE_EMAIL),
            )

        logger.info(f"User {user.id} requested an email change")
        await self._deliver(
            self.emails.send_change_email(user.email, with_query(callback, token=token)),
            "change_email",
            user.id,
        )
        return True

    async def send_verify_change_email(
        self,
        session: AsyncSession,
        identity: RequestIdentity,
        token: str,
        email: str,
        callback_url: str,
    ) -> bool:
        """Spend the change_email token and send a confirmation link to the new address."""
        callback = resolve_callback_url(callback_url)
        target = normalize_email(email)
        user = identity.user

        async with atomic(session):
            if await get_user_by_email(session, target) is not None:
                raise EmailAlreadyInUse()
            await consume_token(session, token, TokenPurpose.CHANGE_EMAIL, user_id=user.id)
            verify_token = await issue_token(
                session,
                TokenPurpose.VERIFY_NEW_EMAIL,
                user.id,
                settings.token_ttl(TokenPurpose.VERIFY_NEW_EMAIL),
                VerifyNewEmailPayload(email=target),
            )

        await self._deliver(
            self.emails.send_verify_change_email(
                target, with_query(callback, token=verify_token, email=target)
            ),
            "verify_new_email",
            user.id,
        )
        return True

    async def change_email(
        self,
        session: AsyncSession,
        identity: RequestIdentity,
        token: str,
        email: str,
    ) -> User:
        """Commit a pending email change.

        The token must be the caller's verify_new_email token and its target
        address must equal ``email``. The new address starts unverified.
        """
        target = normalize_email(email)
        user = identity.user

        async with atomic(session):
            consumed = await consume_token(
                session, token, TokenPurpose.VERIFY_NEW_EMAIL, user_id=user.id
            )
            payload = consumed.payload
            if not isinstance(payload, VerifyNewEmailPayload):
                raise PurposeMismatch()
            if normalize_email(payload.email) != target:
                raise PayloadMismatch()
            if await get_user_by_email(session, target) is not None:
                raise EmailAlreadyInUse()

            previous_email = user.email
            user.email = target
            user.email_verified_at = None
            session.add(user)
            # Verification links for the old address must not verify the new one
            await invalidate_tokens(session, user.id, TokenPurpose.VERIFY_EMAIL)
            try:
                await session.flush()
            except IntegrityError as e:
                raise EmailAlreadyInUse() from e

        logger.info(f"User {user.id} changed email address")
        if not await self.emails.send_email_changed_notice(previous_email, target):
            logger.warning(f"Could not notify previous address of user {user.id}")
        return user

    # Email verification

    async def send_verify_email(
        self,
        session: AsyncSession,
        identity: RequestIdentity,
        callback_url: str,
    ) -> bool:
        """Send a verification link for the account's current address."""
        callback = resolve_callback_url(callback_url)
        user = identity.user

        async with atomic(session):
            token = await issue_token(
                session,
                TokenPurpose.VERIFY_EMAIL,
                user.id,
                settings.token_ttl(TokenPurpose.VERIFY_EMAIL),
                VerifyEmailPayload(email=user.email),
            )

        await self._deliver(
            self.emails.send_verify_email(user.email, with_query(callback, token=token)),
            "verify_email",
            user.id,
        )
        return True

    async def verify_email(
        self,
        session: AsyncSession,
        token: str,
        identity: RequestIdentity | None = None,
    ) -> User:
        """Mark the account's address verified if the token was issued for it."""
        async with atomic(session):
            consumed = await consume_token(
                session,
                token,
                TokenPurpose.VERIFY_EMAIL,
                user_id=identity.user_id if identity else None,
            )
            user = await get_user(session, consumed.user_id)
            if user is None:
                raise UserNotFound()
            payload = consumed.payload
            if not isinstance(payload, VerifyEmailPayload):
                raise PurposeMismatch()
            if normalize_email(payload.email) != user.email:
                raise PayloadMismatch()
            user.email_verified_at = utcnow()
            session.add(user)

        logger.info(f"User {user.id} verified their email address")
        return user

    # Password

    async def _send_password_email(
        self,
        session: AsyncSession,
        user: User,
        purpose: TokenPurpose,
        callback_url: str,
    ) -> bool:
        callback = resolve_callback_url(callback_url)

        async with atomic(session):
            token = await issue_token(session, purpose, user.id, settings.token_ttl(purpose))

        link = with_query(callback, token=token)
        if purpose == TokenPurpose.SET_PASSWORD:
            sent = self.emails.send_set_password(user.email, link)
        else:
            sent = self.emails.send_change_password(user.email, link)
        await self._deliver(sent, purpose.value, user.id)
        return True

    async def send_set_password_email(
        self,
        session: AsyncSession,
        identity: RequestIdentity,
        email: str | None,
        callback_url: str,
    ) -> bool:
        """Mail a set_password link to the caller (e.g. a passwordless account)."""
        return await self._send_password_email(
            session, identity.user, TokenPurpose.SET_PASSWORD, callback_url
        )

    async def send_change_password_email(
        self,
        session: AsyncSession,
        identity: RequestIdentity,
        email: str | None,
        callback_url: str,
    ) -> bool:
        """Mail a change_password link to the caller."""
        return await self._send_password_email(
            session, identity.user, TokenPurpose.CHANGE_PASSWORD, callback_url
        )

    async def send_reset_password_email(
        self,
        session: AsyncSession,
        email: str,
        callback_url: str,
    ) -> bool:
        """Forgot-password entry point; needs no session.

        Answers True for unknown addresses too, so it can't be used to probe
        which emails have accounts.
        """
        resolve_callback_url(callback_url)
        user = await get_user_by_email(session, email)
        if user is None:
            logger.info("Password reset requested for unknown email")
            return True
        return await self._send_password_email(
            session, user, TokenPurpose.CHANGE_PASSWORD, callback_url
        )

    async def change_password(
        self,
        session: AsyncSession,
        token: str,
        new_password: str,
        identity: RequestIdentity | None = None,
    ) -> User:
        """Set a new password using a set_password or change_password token.

        With an authenticated caller the token must belong to them; without
        one the token alone authorizes the change. The password is hashed
        before the transaction starts and only the hash is stored.
        """
        validate_password(new_password)
        password_hash = await asyncio.to_thread(hash_password, new_password)

        async with atomic(session):
            consumed = await consume_token(
                session,
                token,
                PASSWORD_TOKEN_PURPOSES,
                user_id=identity.user_id if identity else None,
            )
            user = await get_user(session, consumed.user_id)
            if user is None:
                raise UserNotFound()
            user.password_hash = password_hash
            session.add(user)
            if settings.revoke_sessions_on_password_change:
                await revoke_user_sessions(
                    session,
                    user.id,
                    keep_session_id=identity.session_id if identity else None,
                )

        logger.info(f"User {user.id} changed password")
        return user


credential_workflow = CredentialChangeWorkflow()
