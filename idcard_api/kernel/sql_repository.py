"""
SQLAlchemy-backed credential repository.

All writes go through the caller's session; the request dependency owns the
commit, so a redemption and the mutation it authorises land together.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from idcard_api.kernel.models.id_card import IdCard
from idcard_api.kernel.models.token import OpaqueToken, TokenType
from idcard_api.kernel.models.user import User, UserRole
from idcard_api.kernel.repository import (
    IdCardRecord,
    OpaqueTokenRecord,
    UserRecord,
    normalize_email,
)
from idcard_api.kernel.timeutils import as_utc

_USER_FIELDS = frozenset({"name", "password_hash", "role", "email_verified_at", "deleted_at"})


def _optional_utc(value: Optional[datetime]) -> Optional[datetime]:
    return as_utc(value) if value is not None else None


def _user_record(user: User) -> UserRecord:
    return UserRecord(
        id=user.id,
        email=user.email,
        name=user.name,
        password_hash=user.password_hash,
        role=UserRole(user.role),
        email_verified_at=_optional_utc(user.email_verified_at),
        deleted_at=_optional_utc(user.deleted_at),
    )


def _token_record(token: OpaqueToken) -> OpaqueTokenRecord:
    return OpaqueTokenRecord(
        id=token.id,
        owner_user_id=token.user_id,
        token_type=TokenType(token.type),
        token_hash=token.token_hash,
        expires_at=as_utc(token.expires_at),
        used_at=_optional_utc(token.used_at),
        created_at=as_utc(token.created_at),
        card_id=token.card_id,
    )


def _card_record(card: IdCard) -> IdCardRecord:
    return IdCardRecord(
        id=card.id,
        user_id=card.user_id,
        display_name=card.display_name,
        attributes=dict(card.attributes or {}),
    )


class SqlCredentialRepository:
    """CredentialRepository over an AsyncSession."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # -------------------------- users --------------------------
    async def find_user_by_email(self, email: str) -> Optional[UserRecord]:
        result = await self.session.execute(
            select(User).where(User.email == normalize_email(email))
        )
        user = result.scalar_one_or_none()
        return _user_record(user) if user else None

    async def find_user_by_id(self, user_id: uuid.UUID) -> Optional[UserRecord]:
        user = await self.session.get(User, user_id)
        return _user_record(user) if user else None

    async def create_user(
        self,
        email: str,
        name: str,
        password_hash: str,
        role: UserRole = UserRole.USER,
    ) -> UserRecord:
        if await self.find_user_by_email(email):
            raise ValueError("Email already registered")
        user = User(
            email=normalize_email(email),
            name=name.strip(),
            password_hash=password_hash,
            role=UserRole(role).value,
        )
        self.session.add(user)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            # Lost a race with a concurrent registration of the same email
            raise ValueError("Email already registered") from exc
        await self.session.refresh(user)
        return _user_record(user)

    async def update_user(self, user_id: uuid.UUID, **fields: Any) -> Optional[UserRecord]:
        unknown = set(fields) - _USER_FIELDS
        if unknown:
            raise ValueError(f"Unsupported user fields: {sorted(unknown)}")
        user = await self.session.get(User, user_id)
        if user is None:
            return None
        for key, value in fields.items():
            setattr(user, key, value)
        await self.session.flush()
        await self.session.refresh(user)
        return _user_record(user)

    async def delete_users_soft_deleted_before(self, cutoff: datetime) -> int:
        result = await self.session.execute(
            delete(User).where(and_(User.deleted_at.is_not(None), User.deleted_at < cutoff))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    # -------------------------- opaque tokens --------------------------
    async def create_opaque_token(
        self,
        owner_user_id: uuid.UUID,
        token_type: TokenType,
        token_hash: str,
        expires_at: datetime,
        card_id: Optional[uuid.UUID] = None,
    ) -> OpaqueTokenRecord:
        token = OpaqueToken(
            user_id=owner_user_id,
            card_id=card_id,
            type=token_type.value,
            token_hash=token_hash,
            expires_at=expires_at,
        )
        self.session.add(token)
        await self.session.flush()
        await self.session.refresh(token)
        return _token_record(token)

    async def find_opaque_token_by_hash(
        self,
        token_hash: str,
        token_type: TokenType,
    ) -> Optional[OpaqueTokenRecord]:
        result = await self.session.execute(
            select(OpaqueToken).where(
                and_(
                    OpaqueToken.token_hash == token_hash,
                    OpaqueToken.type == token_type.value,
                )
            )
        )
        token = result.scalar_one_or_none()
        return _token_record(token) if token else None

    async def mark_opaque_token_used(
        self,
        token_hash: str,
        token_type: TokenType,
        now: datetime,
    ) -> Optional[OpaqueTokenRecord]:
        # One conditional UPDATE ... RETURNING: the row lock (or SQLite's
        # writer lock) makes a concurrent second caller match zero rows.
        # The WHERE clause pins the prior used_at to NULL.
        stmt = (
            update(OpaqueToken)
            .where(
                and_(
                    OpaqueToken.token_hash == token_hash,
                    OpaqueToken.type == token_type.value,
                    OpaqueToken.used_at.is_(None),
                    OpaqueToken.expires_at > now,
                )
            )
            .values(used_at=now)
            .returning(
                OpaqueToken.id,
                OpaqueToken.user_id,
                OpaqueToken.type,
                OpaqueToken.token_hash,
                OpaqueToken.expires_at,
                OpaqueToken.created_at,
                OpaqueToken.card_id,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        row = result.one_or_none()
        if row is None:
            return None
        return OpaqueTokenRecord(
            id=row.id,
            owner_user_id=row.user_id,
            token_type=TokenType(row.type),
            token_hash=row.token_hash,
            expires_at=as_utc(row.expires_at),
            used_at=None,
            created_at=as_utc(row.created_at),
            card_id=row.card_id,
        )

    async def delete_expired_opaque_tokens(self, now: datetime) -> int:
        result = await self.session.execute(
            delete(OpaqueToken).where(
                or_(OpaqueToken.expires_at < now, OpaqueToken.used_at.is_not(None))
            ).execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    # -------------------------- id cards --------------------------
    async def create_id_card(
        self,
        user_id: uuid.UUID,
        display_name: str,
        attributes: Dict[str, Any],
    ) -> IdCardRecord:
        card = IdCard(user_id=user_id, display_name=display_name, attributes=attributes)
        self.session.add(card)
        await self.session.flush()
        return _card_record(card)

    async def find_id_card(
        self,
        card_id: uuid.UUID,
        user_id: Optional[uuid.UUID] = None,
    ) -> Optional[IdCardRecord]:
        query = select(IdCard).where(IdCard.id == card_id)
        if user_id is not None:
            query = query.where(IdCard.user_id == user_id)
        result = await self.session.execute(query)
        card = result.scalar_one_or_none()
        return _card_record(card) if card else None
