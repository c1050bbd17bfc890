"""
Kernel Layer

Credential core and its persistence boundary:
- Identity (password hashing, signed credentials, opaque tokens, flows)
- Fixed-window rate limiter
- Record types and the SQL repository
"""

from idcard_api.kernel.models import User, UserRole, OpaqueToken, TokenType, IdCard
from idcard_api.kernel.repository import (
    CredentialRepository,
    UserRecord,
    OpaqueTokenRecord,
    IdCardRecord,
)

__all__ = [
    # Models
    "User",
    "UserRole",
    "OpaqueToken",
    "TokenType",
    "IdCard",
    # Persistence boundary
    "CredentialRepository",
    "UserRecord",
    "OpaqueTokenRecord",
    "IdCardRecord",
]
