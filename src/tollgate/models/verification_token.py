"""Verification token model for credential-change flows."""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, EmailStr, Field as PydanticField, TypeAdapter
from sqlalchemy import JSON
from sqlmodel import Field, SQLModel

from tollgate.models.base import timestamp_field


class TokenPurpose(str, Enum):
    """Kind of state transition a token authorizes."""

    CHANGE_EMAIL = "change_email"
    VERIFY_NEW_EMAIL = "verify_new_email"
    SET_PASSWORD = "set_password"
    CHANGE_PASSWORD = "change_password"
    VERIFY_EMAIL = "verify_email"


class ChangeEmailPayload(BaseModel):
    purpose: Literal[TokenPurpose.CHANGE_EMAIL] = TokenPurpose.CHANGE_EMAIL


class VerifyNewEmailPayload(BaseModel):
    """Pending email change: the not-yet-verified target address."""

    purpose: Literal[TokenPurpose.VERIFY_NEW_EMAIL] = TokenPurpose.VERIFY_NEW_EMAIL
    email: EmailStr


class SetPasswordPayload(BaseModel):
    purpose: Literal[TokenPurpose.SET_PASSWORD] = TokenPurpose.SET_PASSWORD


class ChangePasswordPayload(BaseModel):
    purpose: Literal[TokenPurpose.CHANGE_PASSWORD] = TokenPurpose.CHANGE_PASSWORD


class VerifyEmailPayload(BaseModel):
    purpose: Literal[TokenPurpose.VERIFY_EMAIL] = TokenPurpose.VERIFY_EMAIL
    email: EmailStr


TokenPayload = Annotated[
    ChangeEmailPayload
    | VerifyNewEmailPayload
    | SetPasswordPayload
    | ChangePasswordPayload
    | VerifyEmailPayload,
    PydanticField(discriminator="purpose"),
]

token_payload_adapter: TypeAdapter[TokenPayload] = TypeAdapter(TokenPayload)


def load_payload(purpose: str, data: dict[str, Any] | None) -> TokenPayload:
    """Rebuild the typed payload from its stored JSON form."""
    return token_payload_adapter.validate_python({**(data or {}), "purpose": purpose})


class VerificationToken(SQLModel, table=True):
    """Single-use token authorizing one email or password change.

    The primary key is the SHA-256 digest of the token value. A token with
    ``consumed_at`` set never authorizes anything again, whether it was used
    or invalidated by a newer token for the same user and purpose.
    """

    __tablename__ = "verification_tokens"

    id: str = Field(primary_key=True, max_length=64, description="SHA-256 of the token value")
    purpose: str = Field(max_length=32, index=True)
    user_id: str = Field(foreign_key="users.id", index=True, ondelete="CASCADE", max_length=21)
    payload: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    created_at: datetime = timestamp_field(now=True)
    expires_at: datetime = timestamp_field(index=True, nullable=False)
    consumed_at: datetime | None = timestamp_field(default=None)
