"""
Queue Service Configuration Module

Centralized configuration management with Pydantic validation.
All environment variables are validated at startup to catch misconfigurations early.
"""

from datetime import timedelta
from functools import lru_cache
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class QueueSettings(BaseSettings):
    """
    Queue service configuration with validation.

    All settings can be overridden via environment variables.
    Validation happens at startup to fail fast on misconfiguration.
    """

    # === Security ===
    queue_api_secret: Optional[str] = Field(
        default=None,
        min_length=16,
        description="API authentication secret (min 16 chars for security)"
    )
    environment: str = Field(
        default="development",
        description="Environment: development, staging, production"
    )

    # === CORS ===
    cors_origins: str = Field(
        default="",
        description="Comma-separated list of allowed CORS origins"
    )

    # === Storage ===
    queue_store: str = Field(
        default="mongodb",
        description="Entry store backend: mongodb or memory"
    )
    mongodb_uri: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB connection URI"
    )
    mongo_db_name: str = Field(
        default="queue_app",
        description="MongoDB database name"
    )
    mongo_collection: str = Field(
        default="queues",
        description="MongoDB collection holding queue entries"
    )
    mongo_transactions: bool = Field(
        default=False,
        description="Wrap order shifts in multi-document transactions (needs a replica set)"
    )

    # === Redis (Optional) ===
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis connection URL for queue event pub/sub (optional)"
    )

    # === Queue Lifecycle ===
    auto_delete_delay_seconds: int = Field(
        default=3600,
        ge=1,
        le=86400 * 30,
        description="Seconds a completed entry stays before automatic removal"
    )
    initial_status: str = Field(
        default="pending",
        min_length=1,
        description="Status assigned to new entries"
    )
    terminal_status: str = Field(
        default="completed",
        min_length=1,
        description="Status that schedules automatic removal"
    )
    max_conflict_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts before a concurrent modification is reported (1-10)"
    )
    normalize_on_startup: bool = Field(
        default=True,
        description="Compact gapped orders when the service starts"
    )

    # === Display ===
    display_locale: str = Field(
        default="th-TH",
        description="Locale of the createdAt display string"
    )
    display_timezone: str = Field(
        default="Asia/Bangkok",
        description="Timezone of the createdAt display string"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is a known value."""
        allowed = {"development", "staging", "production"}
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"environment must be one of: {', '.join(sorted(allowed))}")
        return v_lower

    @field_validator("queue_store")
    @classmethod
    def validate_queue_store(cls, v: str) -> str:
        allowed = {"mongodb", "memory"}
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"queue_store must be one of: {', '.join(sorted(allowed))}")
        return v_lower

    @field_validator("queue_api_secret")
    @classmethod
    def validate_secret_strength(cls, v: Optional[str]) -> Optional[str]:
        """Validate API secret has minimum entropy for production."""
        if v is None:
            return None
        weak_secrets = {"secret", "password", "12345678901234567", "changeme"}
        if v.lower() in weak_secrets or len(set(v)) < 4:
            raise ValueError("API secret is too weak - use a secure random string")
        return v

    @field_validator("mongodb_uri")
    @classmethod
    def validate_url_format(cls, v: str) -> str:
        """Basic URL format validation."""
        if not v.startswith(("mongodb://", "mongodb+srv://")):
            raise ValueError(f"Invalid MongoDB URI format: {v}")
        return v

    @field_validator("display_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins into a list."""
        if not self.cors_origins:
            return []
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def auto_delete_delay(self) -> timedelta:
        return timedelta(seconds=self.auto_delete_delay_seconds)

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"

    @property
    def auth_required(self) -> bool:
        """Check if authentication is required."""
        # Auth required in production OR if secret is configured
        return self.is_production or self.queue_api_secret is not None

    def validate_production_config(self) -> List[str]:
        """
        Validate configuration is suitable for production.

        Returns list of warning/error messages.
        """
        issues = []

        if self.is_production:
            if not self.queue_api_secret:
                issues.append("CRITICAL: QUEUE_API_SECRET required in production")
            if self.queue_store == "memory":
                issues.append("CRITICAL: QUEUE_STORE=memory loses all entries on restart")
            if not self.cors_origins:
                issues.append("WARNING: CORS_ORIGINS not configured")
            if "localhost" in self.mongodb_uri:
                issues.append("WARNING: Using localhost MongoDB in production")
            if self.queue_store == "mongodb" and not self.mongo_transactions:
                issues.append(
                    "WARNING: MONGO_TRANSACTIONS=false, failed order shifts are reverted "
                    "with compensating writes instead of a transaction"
                )

        if self.initial_status == self.terminal_status:
            issues.append("CRITICAL: INITIAL_STATUS and TERMINAL_STATUS must differ")

        return issues

    class Config:
        env_prefix = ""  # No prefix, use exact env var names
        case_sensitive = False  # QUEUE_API_SECRET = queue_api_secret


@lru_cache()
def get_settings() -> QueueSettings:
    """
    Get cached settings instance.

    Settings are loaded once and cached for performance.
    Use this function to access configuration throughout the app.
    """
    return QueueSettings()


def validate_config_on_startup() -> None:
    """
    Validate configuration at application startup.

    Raises ValueError with details if config is invalid.
    Logs warnings for non-critical issues.
    """
    import logging
    logger = logging.getLogger(__name__)

    try:
        settings = get_settings()
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}")

    issues = settings.validate_production_config()

    for issue in issues:
        if issue.startswith("CRITICAL"):
            raise ValueError(issue)
        else:
            logger.warning(issue)

    # Log loaded configuration (redact secrets)
    logger.info(f"Configuration loaded: environment={settings.environment}")
    logger.info(f"  queue_store={settings.queue_store}")
    logger.info(f"  mongodb_uri={'*****' if 'localhost' not in settings.mongodb_uri else settings.mongodb_uri}")
    logger.info(f"  auto_delete_delay={settings.auto_delete_delay_seconds}s")
    logger.info(f"  statuses: initial={settings.initial_status!r} terminal={settings.terminal_status!r}")
    logger.info(f"  auth_required={settings.auth_required}")


# Convenience exports
settings = get_settings()
