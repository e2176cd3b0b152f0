"""Session model for cookie and bearer authentication."""

from datetime import datetime

from sqlmodel import Field, SQLModel

from tollgate.models.base import timestamp_field


class UserSession(SQLModel, table=True):
    """Server-side session record.

    The primary key is the SHA-256 digest of the opaque session id handed to
    the client; the raw id is never stored.
    """

    __tablename__ = "user_sessions"

    id: str = Field(primary_key=True, max_length=64, description="SHA-256 of the session id")
    user_id: str = Field(foreign_key="users.id", index=True, ondelete="CASCADE", max_length=21)
    user_agent: str | None = Field(default=None, max_length=512)
    created_at: datetime = timestamp_field(now=True)
    # Null means the session never expires
    expires_at: datetime | None = timestamp_field(default=None, index=True)
