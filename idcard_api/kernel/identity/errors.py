"""
Failure taxonomy for the credential and token core.

Each error carries the HTTP status the API layer maps it to. Messages are
safe to show to clients; none of them embeds token or password material.
"""

from typing import Optional


class CredentialError(Exception):
    """Base class for credential/token failures."""

    status_code: int = 400
    default_message: str = "Credential error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidCredentials(CredentialError):
    """Wrong email or password."""

    status_code = 401
    default_message = "Invalid email or password"


class InvalidSignature(CredentialError):
    """Malformed, forged, or wrong-purpose signed credential."""

    status_code = 400
    default_message = "Invalid verification token"


class Expired(CredentialError):
    """Authentic credential past its TTL; the caller may offer a resend."""

    status_code = 400
    default_message = "Verification link has expired. Please request a new one."


class TokenInvalid(CredentialError):
    """Opaque token absent, already used, or expired. Deliberately one category."""

    status_code = 410
    default_message = "Token expired or invalid"


class RateLimited(CredentialError):
    """Request quota exceeded for a (client, route) key."""

    status_code = 429
    default_message = "Too many requests"

    def __init__(self, retry_after: int, headers: Optional[dict[str, str]] = None):
        super().__init__()
        self.retry_after = retry_after
        self.headers = headers or {"Retry-After": str(retry_after)}


class Unconfigured(CredentialError):
    """Missing secret or store wiring. Never detailed to clients in production."""

    status_code = 500
    default_message = "Credential service is not configured"
