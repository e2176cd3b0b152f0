"""SQLModel database models."""

from tollgate.models.base import TimestampMixin
from tollgate.models.session import UserSession
from tollgate.models.user import User, UserRead
from tollgate.models.verification_token import TokenPurpose, VerificationToken

__all__ = [
    "TimestampMixin",
    "TokenPurpose",
    "User",
    "UserRead",
    "UserSession",
    "VerificationToken",
]
