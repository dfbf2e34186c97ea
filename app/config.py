"""Application configuration settings."""
from __future__ import annotations

from functools import lru_cache

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOCK_BACKENDS = {"auto", "oracle", "postgresql", "table"}


class Settings(BaseSettings):
    """Environment configuration for the dormant-client backoffice API."""

    app_env: str = "dev"
    database_url: str = "sqlite:///backoffice.db"
    LOG_LEVEL: str = "INFO"
    CORS_ALLOW_ORIGINS: list[str] = ["http://localhost:3000"]
    SENTRY_DSN: str | None = None
    PROMETHEUS_ENABLED: bool = False
    ALLOW_DB_CREATE_ALL: bool = False

    # --- Connection pool -------------------------------------------------
    DB_POOL_SIZE: int = 2
    DB_MAX_OVERFLOW: int = 8
    DB_POOL_TIMEOUT: int = 60
    DB_POOL_RECYCLE: int = 1800
    ORACLE_CLIENT_LIB_DIR: str | None = None

    # --- Procedures ------------------------------------------------------
    PROCEDURE_LOCK_BACKEND: str = "auto"
    DORMANT_DEFAULT_TIMEOUT_SECONDS: int = Field(default=30, ge=0)
    DORMANT_SCHEDULE_ENABLED: bool = False
    DORMANT_SCHEDULE_CRON: str = "0 3 * * *"

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("PROCEDURE_LOCK_BACKEND")
    @classmethod
    def _known_lock_backend(cls, value: str) -> str:
        cleaned = value.strip().lower()
        if cleaned not in LOCK_BACKENDS:
            raise ValueError(f"PROCEDURE_LOCK_BACKEND must be one of {sorted(LOCK_BACKENDS)}")
        return cleaned

    @field_validator("ORACLE_CLIENT_LIB_DIR", "SENTRY_DSN")
    @classmethod
    def _strip_empty(cls, value: str | None) -> str | None:
        """Normalise empty optional strings to ``None``."""

        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None


class AppInfo(BaseModel):
    name: str = "dormant-backoffice-api"
    version: str = "0.1.0"


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()


__all__ = ["LOCK_BACKENDS", "Settings", "AppInfo", "get_settings"]
