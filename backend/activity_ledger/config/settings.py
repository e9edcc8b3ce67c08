"""
Application configuration via Pydantic Settings.

All values are sourced from environment variables or an .env file.
No defaults expose insecure behaviour in production.
"""

from __future__ import annotations

from enum import StrEnum
from functools import lru_cache
from typing import Annotated

from pydantic import BeforeValidator, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    """Deployment environment identifiers."""

    DEVELOPMENT = "development"
    TESTING = "testing"
    PRODUCTION = "production"


class LogLevel(StrEnum):
    """Structured log level options."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def _parse_cors_origins(value: str | list[str]) -> list[str]:
    """Accept comma-separated string or list for CORS origins."""
    if isinstance(value, list):
        return value
    return [origin.strip() for origin in value.split(",") if origin.strip()]


class Settings(BaseSettings):
    """
    Centralised, type-validated application configuration.

    Reads from environment variables with an optional .env file.
    All secrets are Pydantic SecretStr to prevent accidental logging.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="forbid",
    )

    # ── Application ────────────────────────────────────────────────────── #
    app_name: str = Field(default="Activity Ledger", description="Human-readable application name")
    app_version: str = Field(default="1.0.0", description="Semantic version string")
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Deployment environment (development|testing|production)",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode. Must be False in production.",
    )

    # ── Server ─────────────────────────────────────────────────────────── #
    host: str = Field(default="127.0.0.1", description="Bind host. Default local-only.")
    port: int = Field(default=8000, ge=1024, le=65535, description="Bind port")

    # ── CORS ───────────────────────────────────────────────────────────── #
    cors_origins: Annotated[list[str], BeforeValidator(_parse_cors_origins)] = Field(
        default=["http://localhost:5173"],
        description="Comma-separated list of allowed CORS origins",
    )

    # ── Database ───────────────────────────────────────────────────────── #
    database_url: str = Field(
        default="sqlite+aiosqlite:///./activity.db",
        description=(
            "Async SQLAlchemy connection string. "
            "Use sqlite+aiosqlite:// for local or postgresql+asyncpg:// for production."
        ),
    )
    db_pool_size: int = Field(default=5, ge=1, le=50, description="Connection pool size")
    db_max_overflow: int = Field(default=10, ge=0, le=100, description="Pool max overflow")
    db_echo: bool = Field(default=False, description="Log all SQL statements (debug only)")
    run_migrations_on_startup: bool = Field(
        default=True,
        description="Apply Alembic migrations to head when the app starts",
    )

    # ── Auth / JWT ─────────────────────────────────────────────────────── #
    jwt_secret_key: SecretStr = Field(
        ...,
        description="HS256 signing secret. Minimum 32 characters. Required.",
    )
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    jwt_access_token_expire_minutes: int = Field(
        default=60,
        ge=5,
        le=1440,
        description="Access token TTL in minutes",
    )

    # ── Rate Limiting ──────────────────────────────────────────────────── #
    rate_limit_default: str = Field(
        default="100/minute",
        description="Default rate limit string (slowapi format)",
    )

    # ── Logging ────────────────────────────────────────────────────────── #
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Minimum log level")
    log_json: bool = Field(default=True, description="Emit logs as JSON (False for dev console)")

    # ── Activity log ───────────────────────────────────────────────────── #
    activity_query_default_limit: int = Field(
        default=100, ge=1, description="Page size when the caller gives no limit"
    )
    activity_query_max_limit: int = Field(
        default=500, ge=1, description="Hard cap on rows returned by one query"
    )
    activity_verify_default_limit: int = Field(
        default=5000, ge=1, description="Records checked when the caller gives no limit"
    )
    activity_verify_max_limit: int = Field(
        default=20000, ge=1, description="Hard cap on records checked by one verification"
    )
    activity_stream_poll_seconds: float = Field(
        default=2.0, gt=0, le=60, description="Live tail poll interval"
    )
    activity_stream_heartbeat_seconds: int = Field(
        default=10, ge=1, le=300, description="Interval between SSE keep-alive comments"
    )
    activity_stream_batch_size: int = Field(
        default=200, ge=1, le=5000, description="Maximum rows delivered per poll tick"
    )

    # ── Validators ─────────────────────────────────────────────────────── #

    @field_validator("jwt_secret_key")
    @classmethod
    def jwt_secret_must_be_strong(cls, v: SecretStr) -> SecretStr:
        if len(v.get_secret_value()) < 32:
            raise ValueError("jwt_secret_key must be at least 32 characters")
        return v

    @model_validator(mode="after")
    def production_safety_checks(self) -> Settings:
        if self.environment == Environment.PRODUCTION:
            if self.debug:
                raise ValueError("debug must be False in production")
            if self.db_echo:
                raise ValueError("db_echo must be False in production")
        return self

    @model_validator(mode="after")
    def limits_are_consistent(self) -> Settings:
        if self.activity_query_default_limit > self.activity_query_max_limit:
            raise ValueError("activity_query_default_limit exceeds activity_query_max_limit")
        if self.activity_verify_default_limit > self.activity_verify_max_limit:
            raise ValueError("activity_verify_default_limit exceeds activity_verify_max_limit")
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Return the cached Settings singleton.

    Use dependency injection in FastAPI routes:
        settings: Settings = Depends(get_settings)
    """
    return Settings()
