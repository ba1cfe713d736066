"""Application configuration and settings management."""
from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Role id reserved for the non-interactive automation principal.
AUTOMATION_ROLE_ID = 0


class Settings(BaseSettings):
    """Global application settings loaded from environment variables or .env."""

    model_config = SettingsConfigDict(
        env_file=(Path(__file__).resolve().parent.parent / ".." / ".env"),
        env_file_encoding="utf-8",
        env_prefix="GATEKEEPER_",
        extra="ignore",
        env_nested_delimiter="__",
    )

    app_name: str = "Gatekeeper"
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite+aiosqlite:///./gatekeeper.db"

    # Security
    secret_key: str = "change-me"
    recovery_secret_key: str | None = None
    encryption_key: str | None = None
    password_hash_rounds: int = 10
    generated_password_length: int = 10
    session_token_lifetime_minutes: int = 60 * 24
    recovery_token_lifetime_minutes: int = 60
    reset_token_store_window_hours: int = 24

    allowed_origins: List[str] = [
        "http://localhost:3001",
        "http://127.0.0.1:3001",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]
    frontend_url: str = "http://localhost:3001"

    # Google OAuth
    google_client_id: str | None = None
    google_client_secret: str | None = None
    google_redirect_uri: str = "http://localhost:3000/api/auth/google/callback"

    # Mail
    sendgrid_api_key: str | None = None
    mail_from: str = "no-reply@localhost"
    mail_from_name: str | None = None

    # Scheduler
    token_cleanup_interval_minutes: int = 60

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: List[str] | str) -> List[str]:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("frontend_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def effective_recovery_secret(self) -> str:
        return self.recovery_secret_key or self.secret_key


@lru_cache
def get_settings() -> Settings:
    """Return memoized settings instance."""

    return Settings()
