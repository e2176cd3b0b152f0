"""User model."""

from datetime import datetime

from sqlmodel import Field, SQLModel

from tollgate.models.base import TimestampMixin, generate_nanoid, timestamp_field


def normalize_email(email: str) -> str:
    """Canonical form used for storage and lookups (emails are case-insensitive)."""
    return email.strip().lower()


class User(TimestampMixin, SQLModel, table=True):
    """User account model.

    ``email`` and ``password_hash`` are only changed through the credential
    change workflow. ``password_hash`` is null for passwordless accounts.
    """

    __tablename__ = "users"

    id: str = Field(default_factory=generate_nanoid, primary_key=True, max_length=21)
    name: str = Field(max_length=255)
    email: str = Field(unique=True, index=True, max_length=255)
    email_verified_at: datetime | None = timestamp_field(default=None)
    password_hash: str | None = Field(default=None, max_length=255)
    avatar_url: str | None = Field(default=None, max_length=2048)


class UserRead(SQLModel):
    """Public view of a user, as returned to the signed-in client."""

    id: str
    name: str
    email: str
    avatar_url: str | None
    email_verified: bool
    has_password: bool

    @classmethod
    def from_user(cls, user: User) -> "UserRead":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            avatar_url=user.avatar_url,
            email_verified=user.email_verified_at is not None,
            has_password=user.password_hash is not None,
        )
