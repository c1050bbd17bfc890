"""
Opaque single-use tokens (password reset, id-card verification).

Only the SHA-256 digest of a raw token is stored.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from idcard_api.kernel.models.base import Base, generate_uuid


class TokenType(str, Enum):
    """Purpose an opaque token was minted for."""
    RESET = "reset"
    IDCARD = "idcard"


class OpaqueToken(Base):
    """Hashed, expiring, single-use token owned by a user."""

    __tablename__ = "tokens"
    __table_args__ = (
        Index("ix_tokens_user_id_type", "user_id", "type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=generate_uuid,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    # Set for id-card tokens: the card a verifier is shown
    card_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(),
        ForeignKey("id_cards.id", ondelete="CASCADE"),
        nullable=True,
    )
    type: Mapped[TokenType] = mapped_column(
        String(20),
        nullable=False,
    )
    token_hash: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        unique=True,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    used_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<OpaqueToken {self.type} user={self.user_id}>"
