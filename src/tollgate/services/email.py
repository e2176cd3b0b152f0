"""Transactional email: delivery backends and the credential-change messages.

Backends report failure by returning False instead of raising, so callers
decide whether a lost email is fatal.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.message import EmailMessage
from html import escape

import aiosmtplib
import httpx

from tollgate.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutgoingEmail:
    to: str
    subject: str
    html: str
    text: str

    def as_mime(self, sender: str) -> EmailMessage:
        """Multipart/alternative message with the text part first."""
        message = EmailMessage()
        message["From"] = sender
        message["To"] = self.to
        message["Subject"] = self.subject
        message.set_content(self.text)
        message.add_alternative(self.html, subtype="html")
        return message


class EmailBackend(ABC):
    @abstractmethod
    async def send(self, email: OutgoingEmail) -> bool:
        """Deliver ``email``, returning whether the provider accepted it."""


class ConsoleEmailBackend(EmailBackend):
    """Writes emails to the log instead of sending them.

    The body carries live token links, so it is only printed when
    ``show_body`` is set (development). Otherwise only the envelope is logged.
    """

    def __init__(self, show_body: bool = True) -> None:
        self.show_body = show_body

    async def send(self, email: OutgoingEmail) -> bool:
        rule = "-" * 60
        body = email.text if self.show_body else "(body withheld outside development)\n"
        logger.info(
            f"Email not sent (console backend)\n{rule}\n"
            f"To: {email.to}\nSubject: {email.subject}\n{rule}\n"
            f"{body}{rule}"
        )
        return True


class SMTPEmailBackend(EmailBackend):
    def __init__(
        self,
        host: str,
        port: int,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        sender: str = "",
        timeout: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.sender = sender
        self.timeout = timeout

    async def send(self, email: OutgoingEmail) -> bool:
        try:
            await aiosmtplib.send(
                email.as_mime(self.sender),
                hostname=self.host,
                port=self.port,
                # Blank credentials mean an unauthenticated relay
                username=self.username or None,
                password=self.password or None,
                start_tls=self.use_tls,
                timeout=self.timeout,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP delivery to {email.to} failed: {e}")
            return False
        logger.info(f"Sent '{email.subject}' to {email.to} via SMTP")
        return True


class ResendEmailBackend(EmailBackend):
    """Delivers through the Resend HTTP API."""

    endpoint = "https://api.resend.com/emails"

    def __init__(self, api_key: str, sender: str, timeout: float = 30.0):
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout

    async def send(self, email: OutgoingEmail) -> bool:
        payload = {
            "from": self.sender,
            "to": [email.to],
            "subject": email.subject,
            "html": email.html,
            "text": email.text,
        }
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.post(
                    self.endpoint,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json=payload,
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                logger.error(
                    f"Resend rejected email to {email.to}: {e.response.status_code} {e.response.text}"
                )
                return False
            except httpx.HTTPError as e:
                logger.error(f"Resend request for {email.to} failed: {e!r}")
                return False
        logger.info(f"Sent '{email.subject}' to {email.to} via Resend")
        return True


def get_email_backend() -> EmailBackend:
    """Build the backend selected by ``settings.email_backend``."""
    match settings.email_backend:
        case "console":
            return ConsoleEmailBackend(show_body=bool(settings.is_development))
        case "smtp":
            return SMTPEmailBackend(
                host=settings.smtp_host,
                port=settings.smtp_port,
                username=settings.smtp_username,
                password=settings.smtp_password,
                use_tls=settings.smtp_use_tls,
                sender=settings.email_from,
            )
        case "resend":
            return ResendEmailBackend(api_key=settings.resend_api_key, sender=settings.email_from)
    raise ValueError(f"Unknown email backend: {settings.email_backend}")


def render_action_email(
    heading: str,
    body: str,
    action_label: str | None = None,
    link: str | None = None,
    expires_minutes: int | None = None,
) -> tuple[str, str]:
    """Render the shared transactional layout.

    Returns:
        (html, text) pair
    """
    expiry = f" This link will expire in {expires_minutes} minutes." if expires_minutes else ""
    footer = "If you didn't request this email, you can safely ignore it."

    button = ""
    fallback = ""
    if action_label and link:
        safe_link = escape(link, quote=True)
        button = f"""
        <div style="text-align: center; margin: 30px 0;">
            <a href="{safe_link}"
               style="background: #2563eb; color: white; padding: 12px 30px; border-radius: 6px; text-decoration: none; font-weight: 500; display: inline-block;">
                {escape(action_label)}
            </a>
        </div>"""
        fallback = f"""
    <div style="text-align: center; color: #666; font-size: 12px;">
        <p>
            If the button doesn't work, copy and paste this link into your browser:<br>
            <a href="{safe_link}" style="color: #2563eb; word-break: break-all;">{safe_link}</a>
        </p>
    </div>"""

    html = f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <div style="background: #f9fafb; border-radius: 8px; padding: 30px; margin-bottom: 30px;">
        <h2 style="margin-top: 0; color: #1a1a1a;">{escape(heading)}</h2>
        <p>{escape(body)}{expiry}</p>
        {button}
        <p style="color: #666; font-size: 14px;">{footer}</p>
    </div>
    {fallback}
</body>
</html>
"""

    text_parts = [heading, "=" * len(heading), "", f"{body}{expiry}"]
    if link:
        text_parts += ["", link]
    text_parts += ["", footer]
    return html, "\n".join(text_parts) + "\n"


class EmailService:
    """High-level email service for credential-change emails."""

    def __init__(self, backend: EmailBackend | None = None):
        self._backend = backend

    @property
    def backend(self) -> EmailBackend:
        """Lazy-load the backend."""
        if self._backend is None:
            self._backend = get_email_backend()
        return self._backend

    async def _send(self, to: str, subject: str, html: str, text: str) -> bool:
        return await self.backend.send(OutgoingEmail(to=to, subject=subject, html=html, text=text))

    async def send_change_email(self, to: str, link: str) -> bool:
        """Ask the owner of the current address to confirm an email change."""
        html, text = render_action_email(
            "Change your email address",
            "We received a request to change the email address on your account. "
            "Click below to continue and enter your new address.",
            "Continue",
            link,
            settings.token_ttl_minutes("change_email"),
        )
        return await self._send(to, "Confirm your email change", html, text)

    async def send_verify_change_email(self, to: str, link: str) -> bool:
        """Send the confirmation link to the new address."""
        html, text = render_action_email(
            "Verify your new email address",
            "Click below to finish moving your account to this email address.",
            "Verify email",
            link,
            settings.token_ttl_minutes("change_email"),
        )
        return await self._send(to, "Verify your new email address", html, text)

    async def send_set_password(self, to: str, link: str) -> bool:
        html, text = render_action_email(
            "Set your password",
            "Click below to set a password for your account.",
            "Set password",
            link,
            settings.token_ttl_minutes("change_password"),
        )
        return await self._send(to, "Set your password", html, text)

    async def send_change_password(self, to: str, link: str) -> bool:
        html, text = render_action_email(
            "Change your password",
            "We received a request to change the password for your account.",
            "Change password",
            link,
            settings.token_ttl_minutes("change_password"),
        )
        return await self._send(to, "Change your password", html, text)

    async def send_verify_email(self, to: str, link: str) -> bool:
        html, text = render_action_email(
            "Verify your email address",
            "Click below to confirm this email address belongs to you.",
            "Verify email",
            link,
            settings.token_ttl_minutes("verify_email"),
        )
        return await self._send(to, "Verify your email address", html, text)

    async def send_email_changed_notice(self, to: str, new_email: str) -> bool:
        """Tell the previous address that the account moved."""
        html, text = render_action_email(
            "Your email address was changed",
            f"The email address on your account was changed to {new_email}. "
            "If you didn't make this change, contact support immediately.",
        )
        return await self._send(to, "Your email address was changed", html, text)


# Global email service instance
email_service = EmailService()
