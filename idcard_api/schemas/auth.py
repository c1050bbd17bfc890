"""
Authentication schemas.
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


def _check_password_strength(v: str) -> str:
    if len(v) < 8:
        raise ValueError("Password must be at least 8 characters")
    if not any(c.isalpha() for c in v):
        raise ValueError("Password must contain at least one letter")
    if not any(c.isdigit() for c in v):
        raise ValueError("Password must contain at least one digit")
    return v


class UserCreate(BaseModel):
    """User registration request."""

    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    name: str = Field(..., min_length=1, max_length=255)

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _check_password_strength(v)


class UserLogin(BaseModel):
    """User login request."""

    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class UserResponse(BaseModel):
    """User profile response."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    email: str
    name: str
    role: str
    email_verified: bool = False
    email_verified_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, user) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role.value if hasattr(user.role, "value") else str(user.role),
            email_verified=user.email_verified_at is not None,
            email_verified_at=user.email_verified_at,
        )


class RegisterResponse(BaseModel):
    """Registration response; the session is obtained by logging in."""

    user: UserResponse
    email_sent: bool
    dev_token: Optional[str] = None


class TokenResponse(BaseModel):
    """Session credential response."""

    token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


class VerificationRequest(BaseModel):
    """Request a (re)sent verification email."""

    email: Optional[str] = Field(None, max_length=320)


class VerificationRequestResponse(BaseModel):
    message: str
    dev_token: Optional[str] = None


class VerificationStatusResponse(BaseModel):
    status: str
    message: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    """Password reset with an opaque token."""

    token: str = Field(..., min_length=1, max_length=256)
    new_password: str = Field(..., min_length=8, max_length=128)
    confirm_password: str = Field(..., max_length=128)

    @field_validator("new_password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _check_password_strength(v)


class MeResponse(BaseModel):
    """Current session claims plus the stored profile."""

    user: UserResponse
    session_expires_at: datetime


class DeleteAccountRequest(BaseModel):
    """Deletion must be explicitly confirmed."""

    confirm: bool = False


class DeleteAccountResponse(BaseModel):
    ok: bool = True
    scheduled_at: datetime
