"""
Application configuration via Pydantic Settings.

All values are sourced from environment variables or an .env file.
No defaults expose insecure behaviour in production.
"""

from __future__ import annotations

from enum import StrEnum
from functools import lru_cache
from pathlib import Path
from typing import Annotated

from pydantic import (
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


class StorageBackend(StrEnum):
    LOCAL = "local"
    S3 = "s3"


class RiskStatusPolicyName(StrEnum):
    PERMISSIVE = "permissive"
    SEQUENTIAL = "sequential"


def _parse_csv(value: str | list[str]) -> list[str]:
    """Accept comma-separated string or list."""
    if isinstance(value, list):
        return value
    return [item.strip() for item in value.split(",") if item.strip()]


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
    app_name: str = Field(default="HMS Nova Core", description="Human-readable application name")
    app_version: str = Field(default="2.0.0", description="Semantic version string")
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
    workers: int = Field(default=1, ge=1, le=16, description="Uvicorn worker processes")
    reload: bool = Field(default=False, description="Auto-reload on code change (dev only)")

    # ── CORS ───────────────────────────────────────────────────────────── #
    cors_origins: Annotated[list[str], BeforeValidator(_parse_csv)] = Field(
        default=["http://localhost:3000"],
        description="Comma-separated list of allowed CORS origins",
    )

    # ── Database ───────────────────────────────────────────────────────── #
    database_url: str = Field(
        default="sqlite+aiosqlite:///./hmsnova.db",
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

    # ── File Storage ───────────────────────────────────────────────────── #
    storage_backend: StorageBackend = Field(
        default=StorageBackend.LOCAL,
        description="Blob store for document files (local|s3)",
    )
    storage_local_path: Path = Field(
        default=Path("./storage"),
        description="Root directory for the local blob store",
    )
    s3_endpoint_url: str | None = Field(
        default=None,
        description="S3-compatible endpoint (Cloudflare R2, MinIO). None uses AWS.",
    )
    s3_bucket: str = Field(default="hmsnova", description="Bucket holding document blobs")
    s3_access_key_id: SecretStr | None = Field(default=None, description="S3 access key id")
    s3_secret_access_key: SecretStr | None = Field(default=None, description="S3 secret key")
    s3_region: str = Field(default="auto", description="S3 region name")
    s3_use_path_style: bool = Field(default=True, description="Path-style addressing (R2)")
    download_url_ttl_seconds: int = Field(
        default=3600,
        ge=60,
        le=86400,
        description="Lifetime of signed document download URLs",
    )
    max_upload_size_mb: int = Field(
        default=50,
        ge=1,
        le=200,
        description="Maximum upload file size in MB",
    )
    allowed_mime_types: Annotated[list[str], BeforeValidator(_parse_csv)] = Field(
        default=[
            "application/pdf",
            "application/msword",
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
            "application/vnd.ms-excel",
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            "image/png",
            "image/jpeg",
            "text/plain",
        ],
        description="Allowed MIME types for uploaded documents",
    )

    # ── Documents & risks ──────────────────────────────────────────────── #
    default_review_interval_months: int = Field(
        default=12,
        ge=1,
        le=120,
        description="Review interval used when neither request nor template provides one",
    )
    risk_status_policy: RiskStatusPolicyName = Field(
        default=RiskStatusPolicyName.PERMISSIVE,
        description="Allowed risk status transitions (permissive|sequential)",
    )

    # ── Rate Limiting ──────────────────────────────────────────────────── #
    rate_limit_default: str = Field(
        default="100/minute",
        description="Default rate limit string (slowapi format)",
    )

    # ── Logging ────────────────────────────────────────────────────────── #
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Minimum log level")
    log_json: bool = Field(default=True, description="Emit logs as JSON (False for dev console)")

    # ── Admin Bootstrap ────────────────────────────────────────────────── #
    admin_email: str = Field(
        default="admin@hmsnova.local",
        description="Bootstrap admin e-mail (used only on first startup)",
    )
    admin_password: SecretStr = Field(
        ...,
        description="Bootstrap admin password. Required. Min 12 chars.",
    )
    admin_tenant_name: str = Field(
        default="HMS Nova",
        description="Tenant the bootstrap admin is placed in",
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
    def s3_credentials_present(self) -> Settings:
        if self.storage_backend == StorageBackend.S3 and (
            self.s3_access_key_id is None or self.s3_secret_access_key is None
        ):
            raise ValueError("s3 storage requires s3_access_key_id and s3_secret_access_key")
        return self

    @model_validator(mode="after")
    def ensure_directories_exist(self) -> Settings:
        """Create the local storage directory if it does not exist."""
        if self.storage_backend == StorageBackend.LOCAL:
            self.storage_local_path.mkdir(parents=True, exist_ok=True)
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
