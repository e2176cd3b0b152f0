"""Request-scoped dependencies: database session, caller identity, throttling."""

import logging
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from tollgate.database import get_session
from tollgate.services.identity import (
    RequestIdentity,
    credential_from_request,
    require_identity,
    resolve_identity,
)
from tollgate.services.rate_limit import Bucket, client_address, get_rate_limiter

logger = logging.getLogger(__name__)

SessionDep = Annotated[AsyncSession, Depends(get_session)]


async def get_identity_optional(request: Request, session: SessionDep) -> RequestIdentity | None:
    """Resolve the caller from the session cookie or bearer header, None if anonymous."""
    credential = credential_from_request(request)
    identity = await resolve_identity(session, credential)
    if credential is not None and identity is None:
        logger.debug(f"Rejected {credential.source} credential")
    return identity


async def get_identity(request: Request, session: SessionDep) -> RequestIdentity:
    """Resolve the caller or raise Unauthenticated (rendered as 401)."""
    return await require_identity(session, credential_from_request(request))


CurrentIdentity = Annotated[RequestIdentity, Depends(get_identity)]
CurrentIdentityOptional = Annotated[RequestIdentity | None, Depends(get_identity_optional)]


def throttle(bucket: Bucket):
    """Build a dependency that counts the request against ``bucket``."""

    async def dependency(request: Request) -> None:
        await get_rate_limiter().hit(bucket, client_address(request))

    dependency.__name__ = f"throttle_{bucket.value}"
    return dependency


SignInRateLimit = Annotated[None, Depends(throttle(Bucket.SIGN_IN))]
EmailRateLimit = Annotated[None, Depends(throttle(Bucket.EMAIL))]
TokenRateLimit = Annotated[None, Depends(throttle(Bucket.TOKEN))]
