"""
Application configuration using pydantic-settings.
Loads from environment variables with .env file support.
"""

from functools import lru_cache
from typing import Annotated, Any, List

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_url: str = "sqlite+aiosqlite:///./idcard_dev.db"

    # Security
    secret_key: str = ""
    algorithm: str = "HS256"
    session_token_expire_minutes: int = 60
    email_verification_expire_hours: int = 24
    password_reset_expire_minutes: int = 30
    id_card_token_expire_minutes: int = 10
    opaque_token_bytes: int = 32
    id_card_token_bytes: int = 24

    # Email (Brevo transactional API)
    brevo_api_key: str = ""
    brevo_api_url: str = "https://api.brevo.com/v3/smtp/email"
    email_from: str = "noreply@leamsp.com"
    email_from_name: str = "LeamSP"
    public_base_url: str = "http://localhost:3000"

    # Maintenance
    cron_secret: str = ""
    deleted_user_retention_days: int = 30

    # Application
    debug: bool = False
    dev_mode: bool = False
    environment: str = "development"
    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR

    # API Settings
    api_prefix: str = "/api"
    project_name: str = "ID Card Accounts API"
    version: str = "1.0.0"
    cors_origins: Annotated[List[str], NoDecode] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Rate limiting (fixed window, per client IP and route)
    rate_limit_enabled: bool = True
    rate_limit_window_seconds: int = 60
    rate_limit_login_per_window: int = 10
    rate_limit_verify_email_per_window: int = 5
    rate_limit_forgot_password_per_window: int = 5
    rate_limit_reset_password_per_window: int = 5
    rate_limit_id_card_verify_per_window: int = 30
    # Header a trusted proxy sets to the real client address (e.g. CF-Connecting-IP).
    # Empty: key on the socket peer; client-supplied forwarding headers are ignored.
    trusted_client_ip_header: str = ""

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @property
    def expose_dev_tokens(self) -> bool:
        """Raw opaque/verification tokens are echoed back only outside production."""
        return self.dev_mode or self.environment == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
