"""
Run the maintenance sweep once against DATABASE_URL.

Deletes expired or used opaque tokens and accounts soft-deleted longer than
DELETED_USER_RETENTION_DAYS ago. Intended for cron on hosts that do not call
POST /api/cron/cleanup.

Usage:
    python -m scripts.cleanup_tokens
"""

import asyncio

from idcard_api.config import get_settings
from idcard_api.database import async_session_maker, close_db
from idcard_api.kernel.identity.credential_service import CredentialService
from idcard_api.kernel.sql_repository import SqlCredentialRepository
from idcard_api.logging_config import configure_logging, get_logger
from idcard_api.services.email_service import LoggingEmailSender

logger = get_logger("scripts.cleanup_tokens")


async def run_cleanup() -> tuple[int, int]:
    async with async_session_maker() as session:
        service = CredentialService(SqlCredentialRepository(session), LoggingEmailSender())
        tokens_deleted = await service.purge_expired_tokens()
        users_deleted = await service.purge_deleted_users()
        await session.commit()
    return tokens_deleted, users_deleted


async def main() -> None:
    settings = get_settings()
    configure_logging(log_level=settings.log_level, environment=settings.environment, debug=settings.debug)
    try:
        tokens_deleted, users_deleted = await run_cleanup()
    finally:
        await close_db()
    logger.info("Cleanup finished: %d tokens, %d users", tokens_deleted, users_deleted)


if __name__ == "__main__":
    asyncio.run(main())
