"""
Maintenance endpoints: scheduled cleanup and an admin check.
"""

import secrets
from typing import Annotated, Optional

from fastapi import APIRouter, Header, HTTPException, status
from pydantic import BaseModel

from idcard_api.api.deps import AdminUser, Credentials
from idcard_api.config import get_settings
from idcard_api.logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter()


class CleanupResponse(BaseModel):
    tokens_deleted: int
    users_deleted: int


class AdminPingResponse(BaseModel):
    ok: bool = True
    admin_id: str


@router.post("/cron/cleanup", response_model=CleanupResponse)
async def cron_cleanup(
    credentials: Credentials,
    x_cron_secret: Annotated[Optional[str], Header()] = None,
):
    """Purge expired or used tokens and long soft-deleted accounts."""
    expected = get_settings().cron_secret
    if not expected or not x_cron_secret or not secrets.compare_digest(x_cron_secret.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )

    tokens_deleted = await credentials.purge_expired_tokens()
    users_deleted = await credentials.purge_deleted_users()
    logger.info(
        "Cleanup finished",
        extra={"tokens_deleted": tokens_deleted, "users_deleted": users_deleted},
    )
    return CleanupResponse(tokens_deleted=tokens_deleted, users_deleted=users_deleted)


@router.get("/admin/ping", response_model=AdminPingResponse)
async def admin_ping(admin: AdminUser):
    """Admin-only liveness check."""
    return AdminPingResponse(admin_id=str(admin.id))
