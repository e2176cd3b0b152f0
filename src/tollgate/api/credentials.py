"""Email and password change endpoints."""

from fastapi import APIRouter
from pydantic import BaseModel, EmailStr, Field

from tollgate.api.deps import (
    CurrentIdentity,
    CurrentIdentityOptional,
    EmailRateLimit,
    SessionDep,
    TokenRateLimit,
)
from tollgate.models import TokenPurpose, UserRead
from tollgate.services.credentials import credential_workflow
from tollgate.services.tokens import peek_token

router = APIRouter()


class SendEmailRequest(BaseModel):
    """Request a link for the signed-in account.

    ``email`` is optional and informational; links go to the account's address.
    """

    email: EmailStr | None = None
    callback_url: str = Field(max_length=2048)


class SendVerifyChangeEmailRequest(BaseModel):
    token: str = Field(max_length=256)
    email: EmailStr
    callback_url: str = Field(max_length=2048)


class ChangeEmailRequest(BaseModel):
    token: str = Field(max_length=256)
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    email: EmailStr
    callback_url: str = Field(max_length=2048)


class ChangePasswordRequest(BaseModel):
    token: str = Field(max_length=256)
    new_password: str


class CallbackRequest(BaseModel):
    callback_url: str = Field(max_length=2048)


class VerifyEmailRequest(BaseModel):
    token: str = Field(max_length=256)


class CheckTokenRequest(BaseModel):
    token: str = Field(max_length=256)
    purpose: TokenPurpose


class CheckTokenResponse(BaseModel):
    purpose: TokenPurpose
    email: str | None = None


@router.post("/send-change-email", response_model=bool)
async def send_change_email(
    body: SendEmailRequest,
    identity: CurrentIdentity,
    session: SessionDep,
    _rate_limit: EmailRateLimit,
):
    """Start an email change; the link goes to the current address."""
    return await credential_workflow.send_change_email(
        session, identity, body.email, body.callback_url
    )


@router.post("/send-verify-change-email", response_model=bool)
async def send_verify_change_email(
    body: SendVerifyChangeEmailRequest,
    identity: CurrentIdentity,
    session: SessionDep,
    _rate_limit: EmailRateLimit,
):
    """Confirm the change request and send a verification link to the new address."""
    return await credential_workflow.send_verify_change_email(
        session, identity, body.token, body.email, body.callback_url
    )


@router.post("/change-email", response_model=UserRead)
async def change_email(
    body: ChangeEmailRequest,
    identity: CurrentIdentity,
    session: SessionDep,
    _rate_limit: TokenRateLimit,
):
    """Move the account to the verified new address."""
    user = await credential_workflow.change_email(session, identity, body.token, body.email)
    return UserRead.from_user(user)


@router.post("/send-verify-email", response_model=bool)
async def send_verify_email(
    body: CallbackRequest,
    identity: CurrentIdentity,
    session: SessionDep,
    _rate_limit: EmailRateLimit,
):
    return await credential_workflow.send_verify_email(session, identity, body.callback_url)


@router.post("/verify-email", response_model=UserRead)
async def verify_email(
    body: VerifyEmailRequest,
    identity: CurrentIdentityOptional,
    session: SessionDep,
    _rate_limit: TokenRateLimit,
):
    user = await credential_workflow.verify_email(session, body.token, identity)
    return UserRead.from_user(user)


@router.post("/send-set-password-email", response_model=bool)
async def send_set_password_email(
    body: SendEmailRequest,
    identity: CurrentIdentity,
    session: SessionDep,
    _rate_limit: EmailRateLimit,
):
    return await credential_workflow.send_set_password_email(
        session, identity, body.email, body.callback_url
    )


@router.post("/send-change-password-email", response_model=bool)
async def send_change_password_email(
    body: SendEmailRequest,
    identity: CurrentIdentity,
    session: SessionDep,
    _rate_limit: EmailRateLimit,
):
    return await credential_workflow.send_change_password_email(
        session, identity, body.email, body.callback_url
    )


@router.post("/send-reset-password-email", response_model=bool)
async def send_reset_password_email(
    body: ResetPasswordRequest,
    session: SessionDep,
    _rate_limit: EmailRateLimit,
):
    """Forgot-password request. Needs no session and never reveals whether the email exists."""
    return await credential_workflow.send_reset_password_email(
        session, body.email, body.callback_url
    )


@router.post("/change-password", response_model=UserRead)
async def change_password(
    body: ChangePasswordRequest,
    identity: CurrentIdentityOptional,
    session: SessionDep,
    _rate_limit: TokenRateLimit,
):
    """Set a new password. The token authorizes the change; a session is optional."""
    user = await credential_workflow.change_password(
        session, body.token, body.new_password, identity
    )
    return UserRead.from_user(user)


@router.post("/check-token", response_model=CheckTokenResponse)
async def check_token(
    body: CheckTokenRequest,
    session: SessionDep,
    _rate_limit: TokenRateLimit,
):
    """Check a link's token before showing its form. The token is not consumed."""
    token = await peek_token(session, body.token, body.purpose)
    return CheckTokenResponse(purpose=token.purpose, email=getattr(token.payload, "email", None))
