"""Application settings and configuration."""

import logging

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

MIN_SECRET_LENGTH = 32

PLACEHOLDER_SECRETS = {"changeme", "change-me", "secret", "password", "test", "your-secret-key"}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application (hardcoded constants)
    app_name: str = "Content CMS Auth Core"
    app_version: str = "0.1.0"

    # Environment-specific settings
    debug: bool = False
    environment: str  # development, staging, production

    # PostgreSQL
    postgres_url: str
    postgres_pool_size: int = 10
    postgres_max_overflow: int = 20
    postgres_pool_timeout: int = 30
    postgres_pool_recycle: int = 3600
    postgres_echo: bool = False
    postgres_create_tables: bool = True  # create missing tables at startup

    # Session, CSRF and failed-login storage: "database", or "memory" for
    # single-instance development without PostgreSQL
    store_backend: str = "database"

    # Redis (shared rate-limit counters for multi-instance deployments)
    redis_url: str | None = None

    # API
    api_prefix: str = "/api"

    # Security: bearer session tokens
    session_secret: str
    jwt_algorithm: str = "HS256"
    token_issuer: str = "content-cms"
    token_audience: str = "admin-panel"
    token_lifetime_minutes: int = 120
    renewal_threshold_minutes: int = 30
    max_session_age_hours: int = 24
    renewal_grace_seconds: int = 30
    session_cookie_name: str = "admin_token"

    # Security: CSRF
    csrf_token_ttl_minutes: int = 60
    csrf_header_name: str = "x-csrf-token"

    # Rate limiting (general gate in front of authenticated routes)
    general_rate_limit: int = 50
    general_rate_window_seconds: int = 300

    # Failed login lockouts
    lockout_threshold: int = 5
    ip_lockout_threshold: int = 20
    lockout_minutes: int = 15
    failed_attempt_window_minutes: int = 60
    failed_attempt_retention_hours: int = 24

    # Maintenance
    cleanup_interval_seconds: int = 3600

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        valid_envs = {"development", "staging", "production"}
        env = str(v).lower()
        if env not in valid_envs:
            raise ValueError(f"Environment must be one of {valid_envs}, got {env}")
        return env

    @field_validator("session_secret")
    @classmethod
    def validate_session_secret(cls, value: str) -> str:
        """Fail closed if SESSION_SECRET is missing, short or a placeholder."""
        if not value:
            raise ValueError("SESSION_SECRET must be set.")

        if len(value) < MIN_SECRET_LENGTH:
            raise ValueError(f"SESSION_SECRET must be at least {MIN_SECRET_LENGTH} characters.")

        lowered = value.lower()
        if lowered in PLACEHOLDER_SECRETS or "changeme" in lowered:
            raise ValueError("SESSION_SECRET must not be a placeholder value.")

        return value

    @field_validator("store_backend")
    @classmethod
    def validate_store_backend(cls, value: str) -> str:
        backend = value.lower()
        if backend not in {"database", "memory"}:
            raise ValueError(f"Store backend must be 'database' or 'memory', got {value}")
        return backend

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, value: str) -> str:
        """Only json and text renderers exist."""
        fmt = value.lower()
        if fmt not in {"json", "text"}:
            raise ValueError(f"Log format must be 'json' or 'text', got {value}")
        return fmt

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


settings = Settings()  # type: ignore[call-arg]
