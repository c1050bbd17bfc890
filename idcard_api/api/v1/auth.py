"""
Authentication endpoints: login, registration, email verification, password
reset and account deletion.
"""

from fastapi import APIRouter, HTTPException, status

from idcard_api.api.deps import (
    Credentials,
    CurrentUser,
    ForgotPasswordRateLimit,
    LoginRateLimit,
    ResetPasswordRateLimit,
    SessionClaimsDep,
    VerifyEmailRateLimit,
)
from idcard_api.config import get_settings
from idcard_api.kernel.identity.credential_service import EmailVerificationStatus
from idcard_api.schemas.auth import (
    DeleteAccountRequest,
    DeleteAccountResponse,
    ForgotPasswordRequest,
    MeResponse,
    RegisterResponse,
    ResetPasswordRequest,
    TokenResponse,
    UserCreate,
    UserLogin,
    UserResponse,
    VerificationRequest,
    VerificationRequestResponse,
    VerificationStatusResponse,
)
from idcard_api.schemas.common import OkResponse

router = APIRouter()


def _verification_url() -> str:
    settings = get_settings()
    return f"{settings.public_base_url.rstrip('/')}/verify-email"


def _reset_url() -> str:
    settings = get_settings()
    return f"{settings.public_base_url.rstrip('/')}/reset-password"


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(data: UserCreate, credentials: Credentials):
    """
    Register a new user account.

    Sends the first verification email; log in separately for a session.
    """
    try:
        result = await credentials.register(
            email=data.email,
            password=data.password,
            name=data.name,
            verification_base_url=_verification_url(),
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )

    return RegisterResponse(
        user=UserResponse.from_record(result.user),
        email_sent=result.email_sent,
        dev_token=result.dev_token,
    )


@router.post("/login", response_model=TokenResponse, dependencies=[LoginRateLimit])
async def login(data: UserLogin, credentials: Credentials):
    """Authenticate and return a session credential."""
    result = await credentials.login(data.email, data.password)
    return TokenResponse(
        token=result.access_token,
        expires_in=result.expires_in,
        user=UserResponse.from_record(result.user),
    )


@router.post(
    "/verify-email",
    response_model=VerificationRequestResponse,
    dependencies=[VerifyEmailRateLimit],
)
async def request_verification_email(data: VerificationRequest, credentials: Credentials):
    """
    Send (or resend) a verification email.

    Responds identically whether or not the account exists.
    """
    if not data.email or not data.email.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email is required",
        )

    result = await credentials.request_email_verification(data.email, _verification_url())
    return VerificationRequestResponse(message=result.message, dev_token=result.dev_token)


@router.get(
    "/verify-email",
    response_model=VerificationStatusResponse,
    dependencies=[VerifyEmailRateLimit],
)
async def confirm_verification_email(credentials: Credentials, token: str = ""):
    """Consume an email verification link."""
    if not token:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Verification token is required",
        )

    outcome = await credentials.confirm_email_verification(token)
    if outcome is EmailVerificationStatus.ALREADY_VERIFIED:
        message = "Email already verified"
    else:
        message = "Email verified successfully"
    return VerificationStatusResponse(status=outcome.value, message=message)


@router.post("/forgot-password", response_model=OkResponse, dependencies=[ForgotPasswordRateLimit])
async def forgot_password(data: ForgotPasswordRequest, credentials: Credentials):
    """Start a password reset. Always succeeds."""
    result = await credentials.request_password_reset(data.email, _reset_url())
    return OkResponse(message=result.message, dev_token=result.dev_token)


@router.post("/reset-password", response_model=OkResponse, dependencies=[ResetPasswordRateLimit])
async def reset_password(data: ResetPasswordRequest, credentials: Credentials):
    """Finish a password reset with the emailed token."""
    if data.new_password != data.confirm_password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Passwords don't match",
        )

    await credentials.reset_password(data.token, data.new_password)
    return OkResponse(message="Password updated")


@router.get("/me", response_model=MeResponse)
async def get_current_user_profile(user: CurrentUser, claims: SessionClaimsDep):
    """Get the current user's profile and session expiry."""
    return MeResponse(
        user=UserResponse.from_record(user),
        session_expires_at=claims.expires_at,
    )


@router.post("/delete-account", response_model=DeleteAccountResponse)
async def delete_account(data: DeleteAccountRequest, user: CurrentUser, credentials: Credentials):
    """Schedule the account for deletion; it stops authenticating at once."""
    if not data.confirm:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Confirmation required",
        )

    scheduled_at = await credentials.delete_account(user.id)
    return DeleteAccountResponse(scheduled_at=scheduled_at)
