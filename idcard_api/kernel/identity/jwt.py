"""
Signed credential (JWT) issuance and validation.

Claim sets are a tagged union on ``purpose`` so a credential minted for one
flow can never be accepted by another, even though both share a secret.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Annotated, Literal, Optional, Union

from jose import JWTError, jwt
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from idcard_api.config import get_settings
from idcard_api.kernel.identity.errors import InvalidSignature, Unconfigured
from idcard_api.kernel.timeutils import Clock, utcnow

SESSION_PURPOSE = "session"
EMAIL_VERIFICATION_PURPOSE = "email-verification"


class SessionClaims(BaseModel):
    """Claims carried by a login session credential."""

    purpose: Literal["session"] = SESSION_PURPOSE
    sub: str  # User ID
    email: str
    role: str
    iat: int
    exp: int

    @property
    def expires_at(self) -> datetime:
        return datetime.fromtimestamp(self.exp, tz=timezone.utc)


class EmailVerificationClaims(BaseModel):
    """Claims carried by an email verification link. No role."""

    purpose: Literal["email-verification"] = EMAIL_VERIFICATION_PURPOSE
    sub: str  # User ID
    email: str
    iat: int
    exp: int

    @property
    def expires_at(self) -> datetime:
        return datetime.fromtimestamp(self.exp, tz=timezone.utc)


CredentialClaims = Annotated[
    Union[SessionClaims, EmailVerificationClaims],
    Field(discriminator="purpose"),
]

_claims_adapter: TypeAdapter[CredentialClaims] = TypeAdapter(CredentialClaims)


@dataclass(frozen=True)
class ValidatedCredential:
    """Outcome of validating an authentic credential."""

    claims: Union[SessionClaims, EmailVerificationClaims]
    expired: bool


class JWTManager:
    """
    JWT creation and verification.

    Signatures are checked by python-jose; expiry is evaluated here against
    ``clock`` so an authentic but stale credential still yields its claims.
    """

    def __init__(
        self,
        secret_key: Optional[str] = None,
        algorithm: Optional[str] = None,
        session_ttl: Optional[timedelta] = None,
        email_verification_ttl: Optional[timedelta] = None,
        clock: Optional[Clock] = None,
    ):
        settings = get_settings()
        self.secret_key = secret_key or settings.secret_key
        if not self.secret_key:
            raise Unconfigured("SECRET_KEY is not set")
        self.algorithm = algorithm or settings.algorithm
        self.session_ttl = session_ttl or timedelta(minutes=settings.session_token_expire_minutes)
        self.email_verification_ttl = email_verification_ttl or timedelta(
            hours=settings.email_verification_expire_hours
        )
        self._clock = clock or utcnow

    def issue(self, claims: Union[SessionClaims, EmailVerificationClaims]) -> str:
        """Sign a claim set into a compact ``header.payload.signature`` string."""
        return jwt.encode(claims.model_dump(), self.secret_key, algorithm=self.algorithm)

    def create_session_token(
        self,
        user_id: str,
        email: str,
        role: str,
        expires_delta: Optional[timedelta] = None,
    ) -> tuple[str, datetime]:
        """
        Create a session credential.

        Returns:
            Tuple of (token, expiration_datetime)
        """
        now = self._clock()
        expire = now + (expires_delta if expires_delta is not None else self.session_ttl)
        claims = SessionClaims(
            sub=str(user_id),
            email=email,
            role=role,
            iat=int(now.timestamp()),
            exp=int(expire.timestamp()),
        )
        return self.issue(claims), expire

    def create_email_verification_token(
        self,
        user_id: str,
        email: str,
        expires_delta: Optional[timedelta] = None,
    ) -> tuple[str, datetime]:
        """
        Create an email verification credential.

        Returns:
            Tuple of (token, expiration_datetime)
        """
        now = self._clock()
        expire = now + (expires_delta if expires_delta is not None else self.email_verification_ttl)
        claims = EmailVerificationClaims(
            sub=str(user_id),
            email=email,
            iat=int(now.timestamp()),
            exp=int(expire.timestamp()),
        )
        return self.issue(claims), expire

    def validate(self, token: str, purpose: Optional[str] = None) -> ValidatedCredential:
        """
        Verify a credential's signature and decode its claims.

        Args:
            token: Compact JWT
            purpose: If given, the purpose the credential must carry

        Returns:
            ValidatedCredential with ``expired=True`` when past ``exp``

        Raises:
            InvalidSignature: bad signature, malformed token, unknown or
                mismatched purpose
        """
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise InvalidSignature() from exc

        try:
            claims = _claims_adapter.validate_python(payload)
        except ValidationError as exc:
            raise InvalidSignature() from exc

        if purpose is not None and claims.purpose != purpose:
            raise InvalidSignature()

        now_ts = self._clock().timestamp()
        return ValidatedCredential(claims=claims, expired=now_ts > claims.exp)


# Default manager instance
_jwt_manager: Optional[JWTManager] = None


def get_jwt_manager() -> JWTManager:
    """Get or create the default JWT manager."""
    global _jwt_manager
    if _jwt_manager is None:
        _jwt_manager = JWTManager()
    return _jwt_manager


def reset_jwt_manager() -> None:
    """Drop the cached manager so the next call re-reads settings."""
    global _jwt_manager
    _jwt_manager = None


def validate_session_token(token: str) -> ValidatedCredential:
    """Validate a session credential with the default manager."""
    return get_jwt_manager().validate(token, purpose=SESSION_PURPOSE)
