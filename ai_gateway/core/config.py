"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


APP_ENV = os.getenv("APP_ENV", "development")

PROJECT_ROOT = Path(__file__).resolve().parents[2]

ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}


def resolve_env_file(app_env: str) -> Path | None:
    """Return the .env file for ``app_env`` if it exists under PROJECT_ROOT.

    Unknown environments fall back to the development file. Deployments that
    inject variables directly simply ship no file.
    """
    path = PROJECT_ROOT / ENV_FILE_MAP.get(app_env, ENV_FILE_MAP["development"])
    return path if path.is_file() else None


# Nested BaseSettings do not read env_file themselves, so the file is loaded
# into os.environ before any settings object is built.
_env_file = resolve_env_file(APP_ENV)
if _env_file is not None and not os.getenv("TESTING"):
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    name: str = Field(
        "AI Gateway",
        description="Service name used in API metadata",
    )
    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Request admission and rate limiting configuration.

    The backend is validated by the limiter factory rather than here, so an
    unknown value surfaces as a ConfigurationAppError at app creation.
    """

    enabled: bool = Field(
        False,
        description="Enable per-caller rate limiting",
    )
    backend: str = Field(
        "local",
        description="Limiter backend: 'local' (in-process) or 'shared' (Redis)",
    )
    max_requests: int = Field(
        100,
        description="Maximum number of requests allowed per window (per caller key)",
        ge=1,
    )
    window_ms: int = Field(
        60000,
        description="Rate limit window size in milliseconds",
        ge=1,
    )
    key_prefix: str = Field(
        "rl:",
        description="Namespace prefix applied to every limiter key",
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* headers on responses",
    )
    message: str = Field(
        "Too many requests, please try again later",
        description="Human-readable message returned with HTTP 429",
    )
    skip_paths: str = Field(
        "/health",
        description="Comma-separated request paths that bypass the admission gate",
    )
    cleanup_interval_seconds: float = Field(
        60.0,
        description="Interval between sweeps of expired windows (local backend)",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )

    @field_validator("backend")
    @classmethod
    def _normalize_backend(cls, value: str) -> str:
        return value.strip().lower()

    @property
    def skip_path_set(self) -> set[str]:
        """Parsed set of request paths exempt from rate limiting."""
        return {path.strip() for path in self.skip_paths.split(",") if path.strip()}


class RedisSettings(BaseSettings):
    """Connection parameters for the shared (Redis) limiter backend."""

    url: str | None = Field(
        None,
        description="Redis connection URL (required for the shared backend)",
    )
    password: str | None = Field(
        None,
        description="Redis password (overrides any password in the URL)",
    )
    db: int | None = Field(
        None,
        description="Redis logical database index",
        ge=0,
    )
    connect_timeout_seconds: float = Field(
        2.0,
        description="Timeout for establishing the Redis connection",
        gt=0,
    )
    operation_timeout_seconds: float = Field(
        2.0,
        description="Upper bound for a single limiter operation against Redis",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field(
        "INFO",
        description="Root log level",
    )
    format: str = Field(
        "json",
        description="Log format: 'json' or 'plain'",
    )
    output: str = Field(
        "stdout",
        description="Log destination: 'stdout' or 'file'",
    )
    file_path: str | None = Field(
        None,
        description="Log file path when output is 'file'",
    )
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(
        5,
        description="Number of rotated log files to keep",
        ge=0,
    )
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to propagate the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=AppSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Process-wide settings; tests build their own Settings(...) instead.
settings = Settings()
