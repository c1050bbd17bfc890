"""
Pytest fixtures for ID card accounts API tests.

Environment is set before any ``idcard_api`` import so the module-level
settings, engine and signing key all point at test values.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, List, Optional, Tuple

# File-based SQLite so every connection of the NullPool engine sees one DB
_tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
_tmp.close()
TEST_DB_PATH = _tmp.name
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{TEST_DB_PATH}"
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only"
os.environ["ENVIRONMENT"] = "development"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["BREVO_API_KEY"] = ""

from idcard_api.config import get_settings  # noqa: E402

get_settings.cache_clear()

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from idcard_api.database import engine  # noqa: E402
from idcard_api.kernel.identity.jwt import JWTManager, reset_jwt_manager  # noqa: E402
from memory_repository import InMemoryCredentialRepository  # noqa: E402
from idcard_api.kernel.models import Base  # noqa: E402
from idcard_api.kernel.rate_limiter import get_rate_limiter  # noqa: E402
from idcard_api.services.email_service import get_email_sender  # noqa: E402

TEST_SECRET = "test-secret-key-for-testing-only"


class FakeClock:
    """Settable UTC clock for TTL tests."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingEmailSender:
    """EmailSender that keeps (kind, to, url) instead of sending."""

    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.sent: List[Tuple[str, str, str]] = []

    async def send_verification_email(self, to: str, url: str, name: Optional[str] = None) -> bool:
        self.sent.append(("verification", to, url))
        return self.succeed

    async def send_password_reset_email(self, to: str, url: str, name: Optional[str] = None) -> bool:
        self.sent.append(("reset", to, url))
        return self.succeed


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def jwt_manager(clock: FakeClock) -> JWTManager:
    """JWT manager on the fake clock."""
    return JWTManager(secret_key=TEST_SECRET, algorithm="HS256", clock=clock)


@pytest.fixture
def memory_repository(clock: FakeClock) -> InMemoryCredentialRepository:
    return InMemoryCredentialRepository(clock=clock)


@pytest.fixture
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture(autouse=True)
def _reset_globals():
    """Limiter buckets and the cached JWT manager are process-wide."""
    get_rate_limiter().reset()
    reset_jwt_manager()
    yield
    get_rate_limiter().reset()
    reset_jwt_manager()


@pytest_asyncio.fixture
async def client(email_sender: RecordingEmailSender) -> AsyncGenerator[AsyncClient, None]:
    """Async client against a fresh schema, with a recording email sender."""
    from idcard_api.main import app

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    app.dependency_overrides[get_email_sender] = lambda: email_sender
    try:
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
        ) as ac:
            yield ac
    finally:
        app.dependency_overrides.pop(get_email_sender, None)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
