"""
Opaque single-use tokens.

A raw token leaves this module exactly once, from ``issue``; the store keeps
only its SHA-256 digest. Lifecycle per token: ISSUED -> REDEEMED | EXPIRED,
both terminal.
"""

import hashlib
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from idcard_api.kernel.identity.errors import TokenInvalid
from idcard_api.kernel.models.token import TokenType
from idcard_api.kernel.repository import CredentialRepository, OpaqueTokenRecord
from idcard_api.kernel.timeutils import Clock, utcnow
from idcard_api.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_TOKEN_BYTES = 32
MIN_TOKEN_BYTES = 24


class TokenState(str, Enum):
    ISSUED = "issued"
    REDEEMED = "redeemed"
    EXPIRED = "expired"


@dataclass(frozen=True)
class IssuedToken:
    """Raw token handed to the caller once, plus when it stops working."""

    token: str
    expires_at: datetime
    record_id: uuid.UUID


def generate_token(nbytes: int = DEFAULT_TOKEN_BYTES) -> str:
    """Random hex token with ``nbytes`` bytes of entropy."""
    if nbytes < MIN_TOKEN_BYTES:
        raise ValueError(f"Opaque tokens need at least {MIN_TOKEN_BYTES} bytes of entropy")
    return secrets.token_hex(nbytes)


def hash_token(raw_token: str) -> str:
    """Deterministic one-way digest used as the lookup key."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def state_of(record: OpaqueTokenRecord, now: datetime) -> TokenState:
    """Classify a stored token. A used token stays REDEEMED after its expiry."""
    if record.used_at is not None:
        return TokenState.REDEEMED
    if record.expires_at <= now:
        return TokenState.EXPIRED
    return TokenState.ISSUED


class OpaqueTokenStore:
    """Issues, redeems and purges hashed opaque tokens."""

    def __init__(self, repository: CredentialRepository, clock: Optional[Clock] = None):
        self.repository = repository
        self._clock = clock or utcnow

    async def issue(
        self,
        owner_id: uuid.UUID,
        token_type: TokenType,
        ttl: timedelta,
        nbytes: int = DEFAULT_TOKEN_BYTES,
        card_id: Optional[uuid.UUID] = None,
    ) -> IssuedToken:
        """
        Mint a token for ``owner_id``.

        Earlier outstanding tokens of the same type are left alone; they
        retire by expiry or redemption.
        """
        raw = generate_token(nbytes)
        expires_at = self._clock() + ttl
        record = await self.repository.create_opaque_token(
            owner_user_id=owner_id,
            token_type=token_type,
            token_hash=hash_token(raw),
            expires_at=expires_at,
            card_id=card_id,
        )
        logger.info(
            "Opaque token issued",
            extra={"token_type": token_type.value, "user_id": str(owner_id), "token_id": str(record.id)},
        )
        return IssuedToken(token=raw, expires_at=expires_at, record_id=record.id)

    async def redeem(
        self,
        raw_token: str,
        token_type: TokenType,
        now: Optional[datetime] = None,
    ) -> OpaqueTokenRecord:
        """
        Consume a token exactly once.

        Returns the record as it was before redemption (``used_at`` is None);
        the redemption time is ``now``.

        Raises:
            TokenInvalid: unknown, already used, expired, or wrong type
        """
        if not raw_token:
            raise TokenInvalid()
        now = now or self._clock()
        token_hash = hash_token(raw_token)
        record = await self.repository.mark_opaque_token_used(token_hash, token_type, now)
        if record is None:
            # Diagnostics only; the caller sees one TokenInvalid for every cause
            existing = await self.repository.find_opaque_token_by_hash(token_hash, token_type)
            reason = state_of(existing, now).value if existing else "unknown"
            logger.info("Opaque token rejected", extra={"token_type": token_type.value, "reason": reason})
            raise TokenInvalid()
        logger.info(
            "Opaque token redeemed",
            extra={"token_type": token_type.value, "user_id": str(record.owner_user_id), "token_id": str(record.id)},
        )
        return record

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Delete expired and used rows. Maintenance sweeps only."""
        count = await self.repository.delete_expired_opaque_tokens(now or self._clock())
        logger.info("Purged opaque tokens", extra={"deleted": count})
        return count
