"""
Application configuration via Pydantic Settings.

All values are sourced from environment variables or an .env file.
No defaults expose insecure behaviour in production.
"""

from __future__ import annotations

from enum import StrEnum
from functools import lru_cache
from typing import Annotated

from pydantic import (
    AnyHttpUrl,
    BeforeValidator,
    Field,
    SecretStr,
    field_validator,
    model_validator,
)
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


def _parse_csv(value: str | list[str]) -> list[str]:
    """Accept comma-separated string or list."""
    if isinstance(value, list):
        return value
    return [item.strip() for item in value.split(",") if item.strip()]


DEFAULT_PERMISSION_RESOURCES = [
    "users",
    "roles",
    "permissions",
    "projects",
    "technologies",
    "experiences",
    "testimonials",
    "contacts",
    "services",
    "uploads",
    "resources",
]

DEFAULT_ALLOWED_MIME_TYPES = [
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/svg+xml",
    "video/mp4",
    "video/webm",
    "video/ogg",
    "video/avi",
    "video/quicktime",
    "application/pdf",
    "text/plain",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
]


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
    app_name: str = Field(default="Portfolio API", description="Human-readable application name")
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
    host: str = Field(default="127.0.0.1", description="Bind host")
    port: int = Field(default=8080, ge=1024, le=65535, description="Bind port")
    reload: bool = Field(default=False, description="Auto-reload on code change (dev only)")

    # ── CORS ───────────────────────────────────────────────────────────── #
    cors_origins: Annotated[list[str], BeforeValidator(_parse_csv)] = Field(
        default=["http://localhost:3000"],
        description="Comma-separated list of allowed CORS origins",
    )

    # ── Database ───────────────────────────────────────────────────────── #
    database_url: str = Field(
        default="sqlite+aiosqlite:///./portfolio.db",
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
        description="Apply Alembic migrations to head when the application starts",
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
    jwt_refresh_token_expire_days: int = Field(
        default=7,
        ge=1,
        le=30,
        description="Refresh token TTL in days",
    )

    # ── Authorization ──────────────────────────────────────────────────── #
    admin_permission_resources: Annotated[list[str], BeforeValidator(_parse_csv)] = Field(
        default=DEFAULT_PERMISSION_RESOURCES,
        description=(
            "Protected resource names enumerated for admin users and seeded as "
            "default permissions"
        ),
    )

    # ── Object Storage (S3-compatible) ─────────────────────────────────── #
    s3_endpoint_url: AnyHttpUrl | None = Field(
        default=None,
        description="Custom S3 endpoint (MinIO, R2...). None uses AWS defaults.",
    )
    s3_region: str = Field(default="us-east-1", description="S3 region")
    s3_bucket: str = Field(default="portfolio-uploads", description="Bucket for uploads")
    s3_access_key_id: SecretStr | None = Field(default=None, description="S3 access key id")
    s3_secret_access_key: SecretStr | None = Field(
        default=None, description="S3 secret access key"
    )
    s3_force_path_style: bool = Field(
        default=True, description="Use path-style addressing (required by MinIO)"
    )
    storage_public_urls: bool = Field(
        default=False,
        description="Serve permanent public URLs instead of presigned ones (no expiry)",
    )

    # ── Uploads & URL lifecycle ────────────────────────────────────────── #
    max_upload_size_mb: int = Field(
        default=10,
        ge=1,
        le=200,
        description="Maximum upload file size in MB",
    )
    allowed_mime_types: Annotated[list[str], BeforeValidator(_parse_csv)] = Field(
        default=DEFAULT_ALLOWED_MIME_TYPES,
        description="Allowed MIME types for uploaded files",
    )
    upload_url_ttl_hours: int = Field(
        default=168,
        ge=1,
        le=168,
        description="Validity of presigned upload URLs (S3 caps presigning at 7 days)",
    )
    refresh_lookahead_hours: int = Field(
        default=24,
        ge=1,
        le=167,
        description="Refresh URLs expiring within this many hours",
    )
    download_url_ttl_minutes: int = Field(
        default=60,
        ge=1,
        le=1440,
        description="Validity of download URLs issued for already-expired uploads",
    )
    upload_retention_days: int = Field(
        default=30,
        ge=1,
        le=3650,
        description="Days an unreferenced upload may stay expired before cleanup",
    )
    counter_max_pending: int = Field(
        default=100,
        ge=1,
        le=10_000,
        description="Maximum in-flight view/download counter increments",
    )

    # ── Scheduler ──────────────────────────────────────────────────────── #
    scheduler_enabled: bool = Field(default=True, description="Start the URL refresh scheduler")
    scheduler_interval_seconds: int = Field(
        default=3600,
        ge=1,
        le=86_400,
        description="Seconds between URL refresh passes",
    )
    refresh_expired_urls: bool = Field(
        default=True,
        description="Also re-presign URLs that already expired before a pass caught them",
    )

    # ── Rate Limiting ──────────────────────────────────────────────────── #
    rate_limit_enabled: bool = Field(default=True, description="Enforce request rate limits")
    rate_limit_default: str = Field(
        default="200/minute",
        description="Default rate limit string (slowapi format)",
    )
    rate_limit_upload: str = Field(
        default="20/minute",
        description="Rate limit for upload endpoints",
    )
    rate_limit_auth: str = Field(
        default="20/minute",
        description="Rate limit for auth endpoints",
    )

    # ── Logging ────────────────────────────────────────────────────────── #
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Minimum log level")
    log_json: bool = Field(default=True, description="Emit logs as JSON (False for dev console)")

    # ── Admin Bootstrap ────────────────────────────────────────────────── #
    admin_username: str = Field(
        default="admin",
        description="Bootstrap admin username (used only on first startup)",
    )
    admin_email: str = Field(
        default="admin@localhost",
        description="Bootstrap admin email",
    )
    admin_password: SecretStr = Field(
        ...,
        description="Bootstrap admin password. Required. Min 12 chars.",
    )

    # ── Validators ─────────────────────────────────────────────────────── #

    @field_validator("jwt_secret_key")
    @classmethod
    def jwt_secret_must_be_strong(cls, v: SecretStr) -> SecretStr:
        if len(v.get_secret_value()) < 32:
            raise ValueError("jwt_secret_key must be at least 32 characters")
        return v

    @field_validator("admin_password")
    @classmethod
    def admin_password_must_be_strong(cls, v: SecretStr) -> SecretStr:
        if len(v.get_secret_value()) < 12:
            raise ValueError("admin_password must be at least 12 characters")
        return v

    @model_validator(mode="after")
    def production_safety_checks(self) -> Settings:
        if self.environment == Environment.PRODUCTION:
            if self.debug:
                raise ValueError("debug must be False in production")
            if self.reload:
                raise ValueError("reload must be False in production")
            if self.db_echo:
                raise ValueError("db_echo must be False in production")
        return self

    @model_validator(mode="after")
    def lookahead_shorter_than_ttl(self) -> Settings:
        if self.refresh_lookahead_hours >= self.upload_url_ttl_hours:
            raise ValueError("refresh_lookahead_hours must be shorter than upload_url_ttl_hours")
        return self

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Return the cached Settings singleton.

    Use dependency injection in FastAPI routes:
        settings: Settings = Depends(get_settings)
    """
    return Settings()
