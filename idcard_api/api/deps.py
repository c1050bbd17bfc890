"""
FastAPI dependencies for authentication, rate limiting, and database sessions.
"""

import uuid
from typing import Annotated, Optional

from fastapi import BackgroundTasks, Depends, HTTPException, Request, Response, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from idcard_api.config import get_settings
from idcard_api.database import get_db
from idcard_api.kernel.identity.credential_service import CredentialService
from idcard_api.kernel.identity.errors import InvalidSignature, RateLimited
from idcard_api.kernel.identity.jwt import SessionClaims, validate_session_token
from idcard_api.kernel.models.user import UserRole
from idcard_api.kernel.rate_limiter import get_rate_limiter
from idcard_api.kernel.repository import UserRecord
from idcard_api.kernel.sql_repository import SqlCredentialRepository
from idcard_api.logging_config import get_logger
from idcard_api.services.email_service import EmailSender, get_email_sender

logger = get_logger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)


DbSession = Annotated[AsyncSession, Depends(get_db)]


def get_repository(db: DbSession) -> SqlCredentialRepository:
    """Repository bound to the request's session."""
    return SqlCredentialRepository(db)


Repository = Annotated[SqlCredentialRepository, Depends(get_repository)]


def get_credential_service(
    repository: Repository,
    email_sender: Annotated[EmailSender, Depends(get_email_sender)],
    background_tasks: BackgroundTasks,
) -> CredentialService:
    """Credential service whose request-mail delivery runs after the response."""
    return CredentialService(repository, email_sender, defer=background_tasks.add_task)


Credentials = Annotated[CredentialService, Depends(get_credential_service)]


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_session_claims(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> SessionClaims:
    """Validated, unexpired session claims or 401."""
    if not credentials:
        raise _unauthorized("Not authenticated")

    try:
        validated = validate_session_token(credentials.credentials)
    except InvalidSignature:
        raise _unauthorized("Invalid or expired token")

    if validated.expired:
        raise _unauthorized("Invalid or expired token")

    return validated.claims


SessionClaimsDep = Annotated[SessionClaims, Depends(get_session_claims)]


async def get_current_user(
    claims: SessionClaimsDep,
    repository: Repository,
) -> UserRecord:
    """Get current authenticated user or raise 401."""
    try:
        user_id = uuid.UUID(claims.sub)
    except ValueError:
        raise _unauthorized("Invalid or expired token")

    user = await repository.find_user_by_id(user_id)
    if not user or user.is_deleted:
        raise _unauthorized("User not found")

    return user


CurrentUser = Annotated[UserRecord, Depends(get_current_user)]


async def require_admin(user: CurrentUser) -> UserRecord:
    """Require the current user to be an admin."""
    if user.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user


AdminUser = Annotated[UserRecord, Depends(require_admin)]


def get_client_ip(request: Request) -> str:
    """
    Client address used for rate limiting.

    Only the header named by ``trusted_client_ip_header`` is honoured; anything
    else a client sends (X-Forwarded-For included) is ignored.
    """
    trusted_header = get_settings().trusted_client_ip_header
    if trusted_header:
        forwarded = request.headers.get(trusted_header)
        if forwarded:
            # Proxies append; the last hop is the one the trusted proxy wrote
            return forwarded.split(",")[-1].strip()
    return request.client.host if request.client else "unknown"


class RateLimit:
    """
    Dependency class enforcing a fixed-window quota per (client IP, route).

    The quota is read from settings by attribute name at request time so
    tests and deployments can change it without rebuilding the app.

    Usage:
        @router.post("/login", dependencies=[Depends(RateLimit("rate_limit_login_per_window"))])
        async def login(data: UserLogin, credentials: Credentials):
            ...
    """

    def __init__(self, quota_setting: str):
        self.quota_setting = quota_setting

    async def __call__(self, request: Request, response: Response) -> None:
        settings = get_settings()
        if not settings.rate_limit_enabled:
            return

        route = request.scope.get("route")
        route_path = route.path if route is not None else request.url.path
        key = f"{get_client_ip(request)}:{route_path}"

        decision = get_rate_limiter().check(
            key,
            window_ms=settings.rate_limit_window_seconds * 1000,
            max_requests=getattr(settings, self.quota_setting),
        )
        if not decision.allowed:
            logger.info("Rate limit exceeded", extra={"route": route_path})
            raise RateLimited(decision.retry_after, headers=decision.headers())

        # Error handlers replace the response; they re-attach these from state
        request.state.rate_limit_headers = decision.headers()
        for name, value in decision.headers().items():
            response.headers[name] = value


LoginRateLimit = Depends(RateLimit("rate_limit_login_per_window"))
VerifyEmailRateLimit = Depends(RateLimit("rate_limit_verify_email_per_window"))
ForgotPasswordRateLimit = Depends(RateLimit("rate_limit_forgot_password_per_window"))
ResetPasswordRateLimit = Depends(RateLimit("rate_limit_reset_password_per_window"))
IdCardVerifyRateLimit = Depends(RateLimit("rate_limit_id_card_verify_per_window"))
