"""
Credential service: login, email verification, password reset and ID-card
token flows.

Each flow is a short linear state machine. Flows share nothing but the
repository, the opaque token store and the hasher; none of them waits on a
second request to resume.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import urlencode

from idcard_api.config import Settings, get_settings
from idcard_api.kernel.identity.errors import Expired, InvalidCredentials, InvalidSignature
from idcard_api.kernel.identity.jwt import (
    EMAIL_VERIFICATION_PURPOSE,
    JWTManager,
    get_jwt_manager,
)
from idcard_api.kernel.identity.opaque_tokens import IssuedToken, OpaqueTokenStore
from idcard_api.kernel.identity.password import PasswordHasher, hash_password, verify_password
from idcard_api.kernel.models.token import TokenType
from idcard_api.kernel.models.user import UserRole
from idcard_api.kernel.repository import CredentialRepository, IdCardRecord, UserRecord, normalize_email
from idcard_api.kernel.timeutils import Clock, utcnow
from idcard_api.logging_config import get_logger
from idcard_api.services.email_service import EmailSender

logger = get_logger(__name__)

VERIFICATION_REQUEST_MESSAGE = "If an account exists with this email, a verification link has been sent."
PASSWORD_RESET_REQUEST_MESSAGE = "If an account exists with this email, a password reset link has been sent."

# Checked when no account matches so every failed login pays for one bcrypt verify
_DUMMY_PASSWORD_HASH = hash_password("dummy-password-for-unknown-accounts")


class EmailVerificationStatus(str, Enum):
    VERIFIED = "verified"
    ALREADY_VERIFIED = "already-verified"


@dataclass(frozen=True)
class LoginResult:
    user: UserRecord
    access_token: str
    expires_at: datetime
    expires_in: int


@dataclass(frozen=True)
class RegistrationResult:
    user: UserRecord
    email_sent: bool
    dev_token: Optional[str] = None


@dataclass(frozen=True)
class VerificationRequestResult:
    message: str
    dev_token: Optional[str] = None


@dataclass(frozen=True)
class PasswordResetRequestResult:
    message: str
    dev_token: Optional[str] = None


@dataclass(frozen=True)
class IdCardVerification:
    owner_id: uuid.UUID
    owner_name: str
    card_id: Optional[uuid.UUID]
    verified_at: datetime


def _link(base_url: str, token: str) -> str:
    separator = "&" if "?" in base_url else "?"
    return f"{base_url}{separator}{urlencode({'token': token})}"


class CredentialService:
    """
    Orchestrates the hasher, signed credentials and opaque tokens.

    Returns typed results or raises the errors in
    ``idcard_api.kernel.identity.errors``; the API layer maps both to HTTP.
    """

    def __init__(
        self,
        repository: CredentialRepository,
        email_sender: EmailSender,
        jwt_manager: Optional[JWTManager] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        defer: Optional[Callable[..., None]] = None,
    ):
        self.repository = repository
        self.email_sender = email_sender
        self.settings = settings or get_settings()
        self._clock = clock or utcnow
        self._jwt_manager = jwt_manager
        self.tokens = OpaqueTokenStore(repository, clock=self._clock)
        # When set (BackgroundTasks.add_task), request mail goes out after the response
        self._defer = defer

    @property
    def jwt_manager(self) -> JWTManager:
        # Resolved lazily: maintenance sweeps run without a signing secret
        if self._jwt_manager is None:
            self._jwt_manager = get_jwt_manager()
        return self._jwt_manager

    async def _dispatch(self, send: Callable[..., Awaitable[bool]], *args: Any) -> None:
        if self._defer is not None:
            self._defer(send, *args)
            return
        await send(*args)

    async def _find_active_user(self, email: str) -> Optional[UserRecord]:
        user = await self.repository.find_user_by_email(email)
        if user is None or user.is_deleted:
            return None
        return user

    # -------------------------------------- login --------------------------------------
    async def login(self, email: str, password: str) -> LoginResult:
        """
        Verify a password and issue a session credential.

        Unknown, soft-deleted and wrong-password accounts fail identically.
        """
        user = await self._find_active_user(email)
        if user is None:
            verify_password(password, _DUMMY_PASSWORD_HASH)
            logger.info("Login failed")
            raise InvalidCredentials()
        if not verify_password(password, user.password_hash):
            logger.info("Login failed")
            raise InvalidCredentials()

        if PasswordHasher.needs_rehash(user.password_hash):
            user = await self.repository.update_user(user.id, password_hash=hash_password(password)) or user
            logger.info("Password rehashed", extra={"user_id": str(user.id)})

        token, expires_at = self.jwt_manager.create_session_token(
            user_id=str(user.id),
            email=user.email,
            role=UserRole(user.role).value,
        )
        expires_in = max(0, int((expires_at - self._clock()).total_seconds()))
        logger.info("Login succeeded", extra={"user_id": str(user.id)})
        return LoginResult(user=user, access_token=token, expires_at=expires_at, expires_in=expires_in)

    # -------------------------------------- registration --------------------------------------
    async def register(
        self,
        email: str,
        password: str,
        name: str,
        verification_base_url: str,
    ) -> RegistrationResult:
        """
        Create an account and send its first verification link.

        Raises:
            ValueError: If email already exists
        """
        user = await self.repository.create_user(
            email=email,
            name=name,
            password_hash=hash_password(password),
        )
        token, _ = self.jwt_manager.create_email_verification_token(str(user.id), user.email)
        email_sent = await self.email_sender.send_verification_email(
            user.email, _link(verification_base_url, token), user.name or None
        )
        logger.info("User registered", extra={"user_id": str(user.id), "email_sent": email_sent})
        return RegistrationResult(
            user=user,
            email_sent=email_sent,
            dev_token=token if self.settings.expose_dev_tokens else None,
        )

    # -------------------------------------- email verification --------------------------------------
    async def request_email_verification(
        self,
        email: str,
        verification_base_url: str,
    ) -> VerificationRequestResult:
        """
        Send a verification link if the account exists and is unverified.

        The response is the same whether the account is unknown, already
        verified or eligible.
        """
        user = await self._find_active_user(email)
        if user is None or user.email_verified_at is not None:
            return VerificationRequestResult(message=VERIFICATION_REQUEST_MESSAGE)

        token, _ = self.jwt_manager.create_email_verification_token(str(user.id), user.email)
        await self._dispatch(
            self.email_sender.send_verification_email,
            user.email,
            _link(verification_base_url, token),
            user.name or None,
        )
        logger.info("Verification email requested", extra={"user_id": str(user.id)})
        return VerificationRequestResult(
            message=VERIFICATION_REQUEST_MESSAGE,
            dev_token=token if self.settings.expose_dev_tokens else None,
        )

    async def confirm_email_verification(self, token: str) -> EmailVerificationStatus:
        """
        Consume an email verification credential.

        Raises:
            InvalidSignature: forged, malformed or wrong-purpose credential,
                or one whose subject no longer matches an account
            Expired: authentic but stale; the user should request a new link
        """
        if not token:
            raise InvalidSignature()
        validated = self.jwt_manager.validate(token, purpose=EMAIL_VERIFICATION_PURPOSE)
        if validated.expired:
            raise Expired()

        claims = validated.claims
        try:
            user_id = uuid.UUID(claims.sub)
        except ValueError as exc:
            raise InvalidSignature() from exc

        user = await self.repository.find_user_by_id(user_id)
        if user is None or user.is_deleted or user.email != normalize_email(claims.email):
            raise InvalidSignature()

        if user.email_verified_at is not None:
            return EmailVerificationStatus.ALREADY_VERIFIED

        await self.repository.update_user(user.id, email_verified_at=self._clock())
        logger.info("Email verified", extra={"user_id": str(user.id)})
        return EmailVerificationStatus.VERIFIED

    # -------------------------------------- password reset --------------------------------------
    async def request_password_reset(self, email: str, reset_base_url: str) -> PasswordResetRequestResult:
        """Issue a reset token for a known account. Always reports success."""
        user = await self._find_active_user(email)
        if user is None:
            return PasswordResetRequestResult(message=PASSWORD_RESET_REQUEST_MESSAGE)

        issued = await self.tokens.issue(
            user.id,
            TokenType.RESET,
            timedelta(minutes=self.settings.password_reset_expire_minutes),
            nbytes=self.settings.opaque_token_bytes,
        )
        await self._dispatch(
            self.email_sender.send_password_reset_email,
            user.email,
            _link(reset_base_url, issued.token),
            user.name or None,
        )
        return PasswordResetRequestResult(
            message=PASSWORD_RESET_REQUEST_MESSAGE,
            dev_token=issued.token if self.settings.expose_dev_tokens else None,
        )

    async def reset_password(self, raw_token: str, new_password: str) -> UserRecord:
        """
        Redeem a reset token and set the new password.

        Under the SQL repository both writes share the request transaction.
        Elsewhere a failed password update after redemption leaves the token
        burned; that window is accepted and not retried.

        Raises:
            TokenInvalid: token unknown, used or expired
        """
        record = await self.tokens.redeem(raw_token, TokenType.RESET)
        user = await self.repository.update_user(
            record.owner_user_id,
            password_hash=hash_password(new_password),
        )
        if user is None:
            # Owner vanished between issuance and redemption
            logger.warning("Reset token redeemed for missing user", extra={"token_id": str(record.id)})
            raise InvalidCredentials("Account no longer exists")
        logger.info("Password reset", extra={"user_id": str(user.id)})
        return user

    # -------------------------------------- id cards --------------------------------------
    async def create_id_card(
        self,
        owner_id: uuid.UUID,
        display_name: str,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> IdCardRecord:
        return await self.repository.create_id_card(owner_id, display_name, attributes or {})

    async def generate_id_card_token(self, owner_id: uuid.UUID, card_id: uuid.UUID) -> IssuedToken:
        """
        Mint a short-lived verification token bound to one of the owner's cards.

        Outstanding tokens for the card stay valid.

        Raises:
            LookupError: card does not exist or belongs to someone else
        """
        card = await self.repository.find_id_card(card_id, user_id=owner_id)
        if card is None:
            raise LookupError("Card not found")
        return await self.tokens.issue(
            owner_id,
            TokenType.IDCARD,
            timedelta(minutes=self.settings.id_card_token_expire_minutes),
            nbytes=self.settings.id_card_token_bytes,
            card_id=card.id,
        )

    async def verify_id_card_token(self, raw_token: str) -> IdCardVerification:
        """
        Redeem an ID-card token and resolve its owner for display.

        Raises:
            TokenInvalid: token unknown, used or expired
        """
        verified_at = self._clock()
        record = await self.tokens.redeem(raw_token, TokenType.IDCARD, now=verified_at)
        owner = await self.repository.find_user_by_id(record.owner_user_id)
        return IdCardVerification(
            owner_id=record.owner_user_id,
            owner_name=owner.name if owner else "",
            card_id=record.card_id,
            verified_at=verified_at,
        )

    # -------------------------------------- account lifecycle --------------------------------------
    async def delete_account(self, user_id: uuid.UUID) -> datetime:
        """Soft delete; the account stops authenticating immediately."""
        scheduled_at = self._clock()
        user = await self.repository.update_user(user_id, deleted_at=scheduled_at, name="")
        if user is None:
            raise InvalidCredentials("Unauthorized")
        logger.info("Account scheduled for deletion", extra={"user_id": str(user_id)})
        return scheduled_at

    # -------------------------------------- maintenance --------------------------------------
    async def purge_expired_tokens(self) -> int:
        return await self.tokens.purge_expired()

    async def purge_deleted_users(self, retention: Optional[timedelta] = None) -> int:
        """Hard-delete accounts soft-deleted longer than the retention period ago."""
        retention = retention or timedelta(days=self.settings.deleted_user_retention_days)
        count = await self.repository.delete_users_soft_deleted_before(self._clock() - retention)
        logger.info("Purged deleted users", extra={"deleted": count})
        return count
