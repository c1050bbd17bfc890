"""
Kernel Data Models

SQLAlchemy models for accounts, opaque tokens and ID cards.
"""

from idcard_api.kernel.models.base import Base, TimestampMixin, SoftDeleteMixin, generate_uuid
from idcard_api.kernel.models.user import User, UserRole
from idcard_api.kernel.models.token import OpaqueToken, TokenType
from idcard_api.kernel.models.id_card import IdCard

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "SoftDeleteMixin",
    "generate_uuid",
    # User
    "User",
    "UserRole",
    # Tokens
    "OpaqueToken",
    "TokenType",
    # Cards
    "IdCard",
]
