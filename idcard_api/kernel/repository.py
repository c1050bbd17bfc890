"""
Persistence boundary consumed by the credential core.

The core never touches ORM instances; repositories hand back frozen records
so the same flows run against SQL or an in-process test double.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Protocol

from idcard_api.kernel.models.token import TokenType
from idcard_api.kernel.models.user import UserRole


@dataclass(frozen=True)
class UserRecord:
    id: uuid.UUID
    email: str
    name: str
    password_hash: str
    role: UserRole = UserRole.USER
    email_verified_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


@dataclass(frozen=True)
class OpaqueTokenRecord:
    id: uuid.UUID
    owner_user_id: uuid.UUID
    token_type: TokenType
    token_hash: str
    expires_at: datetime
    used_at: Optional[datetime]
    created_at: datetime
    card_id: Optional[uuid.UUID] = None


@dataclass(frozen=True)
class IdCardRecord:
    id: uuid.UUID
    user_id: uuid.UUID
    display_name: str
    attributes: Dict[str, Any] = field(default_factory=dict)


def normalize_email(email: str) -> str:
    """Emails are unique case-insensitively; store and look up lower-cased."""
    return (email or "").strip().lower()


class CredentialRepository(Protocol):
    """Keyed store for users, opaque tokens and cards."""

    async def find_user_by_email(self, email: str) -> Optional[UserRecord]:
        ...

    async def find_user_by_id(self, user_id: uuid.UUID) -> Optional[UserRecord]:
        ...

    async def create_user(
        self,
        email: str,
        name: str,
        password_hash: str,
        role: UserRole = UserRole.USER,
    ) -> UserRecord:
        """Raises ValueError if the email is already registered."""
        ...

    async def update_user(self, user_id: uuid.UUID, **fields: Any) -> Optional[UserRecord]:
        ...

    async def create_opaque_token(
        self,
        owner_user_id: uuid.UUID,
        token_type: TokenType,
        token_hash: str,
        expires_at: datetime,
        card_id: Optional[uuid.UUID] = None,
    ) -> OpaqueTokenRecord:
        ...

    async def find_opaque_token_by_hash(
        self,
        token_hash: str,
        token_type: TokenType,
    ) -> Optional[OpaqueTokenRecord]:
        ...

    async def mark_opaque_token_used(
        self,
        token_hash: str,
        token_type: TokenType,
        now: datetime,
    ) -> Optional[OpaqueTokenRecord]:
        """
        Atomically set ``used_at = now`` on the row matching the hash and type
        that is unused and unexpired at ``now``; return the row as it was
        before the update, or None if no row qualified. Two concurrent callers
        must never both get a row.
        """
        ...

    async def delete_expired_opaque_tokens(self, now: datetime) -> int:
        """Delete rows that are expired at ``now`` or already used."""
        ...

    async def delete_users_soft_deleted_before(self, cutoff: datetime) -> int:
        ...

    async def create_id_card(
        self,
        user_id: uuid.UUID,
        display_name: str,
        attributes: Dict[str, Any],
    ) -> IdCardRecord:
        ...

    async def find_id_card(
        self,
        card_id: uuid.UUID,
        user_id: Optional[uuid.UUID] = None,
    ) -> Optional[IdCardRecord]:
        ...
