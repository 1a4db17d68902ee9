"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Polymarket Copy Tracker application, loading and validating
environment variables at startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="sqlite+aiosqlite:///copy-trades.db",
        alias="DATABASE_URL",
        description="PostgreSQL or SQLite connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or SQLite connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings.

    Redis is optional. When set, per-run locks are taken in Redis so that
    several processes sharing one database never run the same run's
    cycle concurrently.
    """

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string (enables distributed run locks)",
    )
    lock_timeout_seconds: float = Field(
        default=300.0,
        alias="REDIS_LOCK_TIMEOUT_SECONDS",
        description="Expiry of a held run lock",
        gt=0.0,
    )
    lock_blocking_timeout_seconds: float = Field(
        default=60.0,
        alias="REDIS_LOCK_BLOCKING_TIMEOUT_SECONDS",
        description="How long to wait for a run lock before giving up",
        gt=0.0,
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v

    @property
    def enabled(self) -> bool:
        """Check if Redis is configured."""
        return bool(self.url)


class PolymarketSettings(BaseSettings):
    """Polymarket API settings."""

    model_config = SettingsConfigDict(env_prefix="POLYMARKET_", extra="ignore")

    data_api_url: str = Field(
        default="https://data-api.polymarket.com",
        alias="POLYMARKET_DATA_API_URL",
        description="Data API base URL (trader activity feed)",
    )
    gamma_api_url: str = Field(
        default="https://gamma-api.polymarket.com",
        alias="POLYMARKET_GAMMA_API_URL",
        description="Gamma API base URL (market resolutions)",
    )
    requests_per_second: float = Field(
        default=2.0,
        alias="POLYMARKET_REQUESTS_PER_SECOND",
        description="Upper bound on upstream request rate",
        gt=0.0,
        le=100.0,
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        alias="POLYMARKET_REQUEST_TIMEOUT_SECONDS",
        description="Per-request timeout",
        gt=0.0,
    )
    max_retries: int = Field(
        default=3,
        alias="POLYMARKET_MAX_RETRIES",
        description="Retries per request for transient failures",
        ge=0,
        le=10,
    )
    activity_page_size: int = Field(
        default=500,
        alias="POLYMARKET_ACTIVITY_PAGE_SIZE",
        description="Records requested per activity page",
        ge=1,
        le=10_000,
    )
    max_activity_limit: int = Field(
        default=10_000,
        alias="POLYMARKET_MAX_ACTIVITY_LIMIT",
        description="Upper bound on activity records fetched per scan",
        ge=1,
    )
    resolution_batch_size: int = Field(
        default=50,
        alias="POLYMARKET_RESOLUTION_BATCH_SIZE",
        description="Condition IDs per market resolution request",
        ge=1,
        le=500,
    )

    @field_validator("data_api_url", "gamma_api_url")
    @classmethod
    def validate_http_url(cls, v: str) -> str:
        """Validate HTTP URL format."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("Polymarket API URL must be an HTTP(S) endpoint")
        return v.rstrip("/")


class SchedulerSettings(BaseSettings):
    """Cycle scheduling settings."""

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_", extra="ignore")

    interval_seconds: float = Field(
        default=600.0,
        alias="SCHEDULER_INTERVAL_SECONDS",
        description="Seconds between ticks",
        gt=0.0,
    )
    config_pause_seconds: float = Field(
        default=0.0,
        alias="SCHEDULER_CONFIG_PAUSE_SECONDS",
        description="Pause between successive configurations within a tick",
        ge=0.0,
    )


class ConfigurationSourceSettings(BaseSettings):
    """Where run configurations are loaded from."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    path: Path = Field(
        default=Path("configurations.json"),
        alias="CONFIGURATIONS_PATH",
        description="JSON file holding the list of run configurations",
    )
    inline: str | None = Field(
        default=None,
        alias="CONFIGURATIONS",
        description="Inline JSON list of run configurations (overrides the file)",
    )


class TelegramSettings(BaseSettings):
    """Telegram notification settings."""

    model_config = SettingsConfigDict(env_prefix="TELEGRAM_", extra="ignore")

    bot_token: SecretStr | None = Field(
        default=None,
        alias="TELEGRAM_BOT_TOKEN",
        description="Telegram bot token",
    )
    chat_id: str | None = Field(
        default=None,
        alias="TELEGRAM_CHAT_ID",
        description="Telegram chat ID for cycle notifications",
    )

    @property
    def enabled(self) -> bool:
        """Check if Telegram notifications are enabled."""
        return self.bot_token is not None and self.chat_id is not None


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from polymarket_copy_tracker.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.scheduler.interval_seconds)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # Nested configuration groups
    #
    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    polymarket: PolymarketSettings = Field(
        default_factory=lambda: PolymarketSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    scheduler: SchedulerSettings = Field(
        default_factory=lambda: SchedulerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    config_source: ConfigurationSourceSettings = Field(
        default_factory=lambda: ConfigurationSourceSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    telegram: TelegramSettings = Field(
        default_factory=lambda: TelegramSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Run without sending actual notifications",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "polymarket": {
                "data_api_url": self.polymarket.data_api_url,
                "gamma_api_url": self.polymarket.gamma_api_url,
                "requests_per_second": str(self.polymarket.requests_per_second),
                "max_activity_limit": str(self.polymarket.max_activity_limit),
            },
            "scheduler": {
                "interval_seconds": str(self.scheduler.interval_seconds),
                "config_pause_seconds": str(self.scheduler.config_pause_seconds),
            },
            "configurations": {
                "path": str(self.config_source.path),
                "inline": "(set)" if self.config_source.inline else "(not set)",
            },
            "telegram_enabled": str(self.telegram.enabled),
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
