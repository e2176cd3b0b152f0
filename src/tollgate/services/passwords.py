"""Password hashing with bcrypt.

bcrypt salts every hash itself and only looks at the first 72 bytes of
input, so passwords are truncated to that length before hashing and
verifying.
"""

import asyncio
import secrets
from functools import lru_cache

import bcrypt

BCRYPT_ROUNDS = 12
BCRYPT_MAX_BYTES = 72


def hash_password(password: str) -> str:
    """Hash a password for storage."""
    pw_bytes = password.encode("utf-8")[:BCRYPT_MAX_BYTES]
    return bcrypt.hashpw(pw_bytes, bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a stored hash."""
    try:
        pw_bytes = password.encode("utf-8")[:BCRYPT_MAX_BYTES]
        return bcrypt.checkpw(pw_bytes, password_hash.encode("utf-8"))
    except (ValueError, TypeError):
        return False


@lru_cache
def dummy_hash() -> str:
    """A hash no password matches, checked when there is no real one."""
    return hash_password(secrets.token_urlsafe(32))


async def check_password(password: str, password_hash: str | None) -> bool:
    """Verify off the event loop.

    Accounts without a hash still pay for one bcrypt check, so response
    time doesn't tell unknown or passwordless accounts apart.
    """
    if not password_hash:
        await asyncio.to_thread(verify_password, password, dummy_hash())
        return False
    return await asyncio.to_thread(verify_password, password, password_hash)
