"""
Outbound email for verification and password reset links.

Senders are injected (see ``get_email_sender``) rather than imported as a
module-level singleton, so tests and tooling can substitute their own.
Sending is fire-and-forget from the caller's point of view: failures are
logged here and reported as ``False``, never raised.
"""

from functools import lru_cache
from html import escape
from typing import Optional, Protocol

import httpx

from idcard_api.config import get_settings
from idcard_api.logging_config import get_logger

logger = get_logger(__name__)


class EmailSender(Protocol):
    async def send_verification_email(self, to: str, url: str, name: Optional[str] = None) -> bool:
        ...

    async def send_password_reset_email(self, to: str, url: str, name: Optional[str] = None) -> bool:
        ...


def _greeting(name: Optional[str]) -> str:
    return f"Hello {escape(name)}," if name else "Hello,"


def build_verification_email(url: str, name: Optional[str] = None) -> tuple[str, str, str]:
    """Return (subject, html, text) for an email verification message."""
    subject = "Verify your email address"
    html = f"""
        <p>{_greeting(name)}</p>
        <p>Please verify your email address by clicking the button below:</p>
        <p><a href="{escape(url, quote=True)}" style="display:inline-block;padding:12px 24px;background-color:#2563eb;color:#fff;text-decoration:none;border-radius:4px;">Verify Email</a></p>
        <p>This link expires in 24 hours. If you did not create an account, you can ignore this email.</p>
        """
    text = f"Verify your email address: {url}"
    return subject, html, text


def build_password_reset_email(url: str, name: Optional[str] = None) -> tuple[str, str, str]:
    """Return (subject, html, text) for a password reset message."""
    subject = "Reset your password"
    html = f"""
        <p>{_greeting(name)}</p>
        <p>We received a request to reset your password.</p>
        <p><a href="{escape(url, quote=True)}" style="display:inline-block;padding:12px 24px;background-color:#2563eb;color:#fff;text-decoration:none;border-radius:4px;">Reset Password</a></p>
        <p>This link expires in 30 minutes. If this wasn't you, ignore this message.</p>
        """
    text = f"Use this link to reset your password: {url}"
    return subject, html, text


class BrevoEmailSender:
    """Sends transactional email through the Brevo HTTP API."""

    def __init__(
        self,
        api_key: str,
        sender_email: str,
        sender_name: str,
        api_url: str = "https://api.brevo.com/v3/smtp/email",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.sender_email = sender_email
        self.sender_name = sender_name
        self.api_url = api_url
        self.timeout = timeout
        self._transport = transport

    async def _send(self, to: str, subject: str, html: str, text: str) -> bool:
        payload = {
            "sender": {"email": self.sender_email, "name": self.sender_name},
            "to": [{"email": to}],
            "subject": subject,
            "htmlContent": html,
            "textContent": text,
        }
        headers = {"api-key": self.api_key, "accept": "application/json"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.api_url, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Email delivery failed: %s (%s)", subject, type(exc).__name__)
            return False
        logger.info("Email sent: %s", subject)
        return True

    async def send_verification_email(self, to: str, url: str, name: Optional[str] = None) -> bool:
        subject, html, text = build_verification_email(url, name)
        return await self._send(to, subject, html, text)

    async def send_password_reset_email(self, to: str, url: str, name: Optional[str] = None) -> bool:
        subject, html, text = build_password_reset_email(url, name)
        return await self._send(to, subject, html, text)


class LoggingEmailSender:
    """Stand-in used when no provider key is configured: logs and skips."""

    async def send_verification_email(self, to: str, url: str, name: Optional[str] = None) -> bool:
        logger.warning("Email provider not configured; verification email not sent")
        return False

    async def send_password_reset_email(self, to: str, url: str, name: Optional[str] = None) -> bool:
        logger.warning("Email provider not configured; password reset email not sent")
        return False


@lru_cache
def get_email_sender() -> EmailSender:
    """Configured sender; FastAPI dependency, overridable in tests."""
    settings = get_settings()
    if not settings.brevo_api_key:
        return LoggingEmailSender()
    return BrevoEmailSender(
        api_key=settings.brevo_api_key,
        sender_email=settings.email_from,
        sender_name=settings.email_from_name,
        api_url=settings.brevo_api_url,
    )
