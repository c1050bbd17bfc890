"""
Identity Core - passwords, signed credentials, opaque tokens and the flows
built on them.
"""

from idcard_api.kernel.identity.password import PasswordHasher, verify_password, hash_password
from idcard_api.kernel.identity.jwt import (
    JWTManager,
    SessionClaims,
    EmailVerificationClaims,
    ValidatedCredential,
    validate_session_token,
)
from idcard_api.kernel.identity.opaque_tokens import OpaqueTokenStore, IssuedToken, TokenState
from idcard_api.kernel.identity.credential_service import CredentialService
from idcard_api.kernel.identity.errors import (
    CredentialError,
    InvalidCredentials,
    InvalidSignature,
    Expired,
    TokenInvalid,
    RateLimited,
    Unconfigured,
)

__all__ = [
    "PasswordHasher",
    "verify_password",
    "hash_password",
    "JWTManager",
    "SessionClaims",
    "EmailVerificationClaims",
    "ValidatedCredential",
    "validate_session_token",
    "OpaqueTokenStore",
    "IssuedToken",
    "TokenState",
    "CredentialService",
    "CredentialError",
    "InvalidCredentials",
    "InvalidSignature",
    "Expired",
    "TokenInvalid",
    "RateLimited",
    "Unconfigured",
]
