"""Opaque secret generation and storage digests."""

import hashlib
import secrets

# 32 bytes of entropy, URL-safe base64 (43 chars)
SECRET_BYTES = 32


def generate_secret() -> str:
    """Generate an unguessable URL-safe secret for session ids and tokens."""
    return secrets.token_urlsafe(SECRET_BYTES)


def digest_secret(value: str) -> str:
    """SHA-256 hex digest used as the stored key for a secret."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()
