"""Error taxonomy for authentication and credential changes.

Every error carries the HTTP status and machine-readable code the API layer
renders; services raise them and never retry.
"""

from pydantic import BaseModel


class ErrorBody(BaseModel):
    """JSON body of every error response."""

    detail: str
    code: str


class TollgateError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 400
    code: str = "bad_request"
    default_message: str = "Request could not be completed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def body(self) -> ErrorBody:
        return ErrorBody(detail=self.message, code=self.code)


class Unauthenticated(TollgateError):
    status_code = 401
    code = "unauthenticated"
    default_message = "Not authenticated"


class InvalidCredentials(TollgateError):
    status_code = 401
    code = "invalid_credentials"
    default_message = "Wrong email or password"


class TokenError(TollgateError):
    """Base for verification token failures."""

    code = "invalid_token"
    default_message = "Invalid token"


class TokenNotFound(TokenError):
    code = "token_not_found"
    default_message = "Invalid or unknown token"


class TokenExpired(TokenError):
    code = "token_expired"
    default_message = "Token has expired"


class TokenAlreadyUsed(TokenError):
    code = "token_already_used"
    default_message = "Token has already been used"


class PurposeMismatch(TokenError):
    code = "purpose_mismatch"
    default_message = "Token cannot be used for this action"


class PayloadMismatch(TokenError):
    code = "payload_mismatch"
    default_message = "Token was issued for a different email address"


class InvalidCallbackUrl(TollgateError):
    code = "invalid_callback_url"
    default_message = "Callback URL is not allowed"


class InvalidPassword(TollgateError):
    code = "invalid_password"
    default_message = "Password does not meet requirements"


class UserNotFound(TollgateError):
    status_code = 404
    code = "user_not_found"
    default_message = "User not found"


class EmailAlreadyInUse(TollgateError):
    status_code = 409
    code = "email_already_in_use"
    default_message = "Email is already in use"


class DeliveryFailed(TollgateError):
    status_code = 502
    code = "delivery_failed"
    default_message = "Failed to send email"


class RateLimited(TollgateError):
    status_code = 429
    code = "rate_limited"
    default_message = "Too many requests"

    def __init__(self, retry_after: int, message: str | None = None) -> None:
        self.retry_after = max(1, retry_after)
        super().__init__(message or f"Too many requests, try again in {self.retry_after} seconds")


class CommitFailed(TollgateError):
    status_code = 503
    code = "commit_failed"
    default_message = "Change could not be saved, please request a new link"
