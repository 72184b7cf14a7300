"""
Identity Reconciliation - Configuration Management

Centralized configuration for environment variables and deployment settings.
This module ensures:
- No hardcoded connection strings
- Missing required variables are reported at startup
- Environment-specific settings (dev/staging/prod)
"""

from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
import logging

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type coercion.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ==================== ENVIRONMENT ====================
    ENVIRONMENT: str = Field(
        default="development",
        description="Runtime environment: development, staging, production"
    )
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode (auto-enabled in development)"
    )

    # ==================== DATABASE ====================
    DATABASE_URL: str = Field(
        default="",
        description="PostgreSQL connection URL (required)"
    )
    DB_POOL_SIZE: int = Field(default=20, description="Connection pool size")
    DB_MAX_OVERFLOW: int = Field(default=10, description="Connections allowed above pool size")
    DB_SSL: bool = Field(default=False, description="Require SSL for database connections")
    DB_STATEMENT_TIMEOUT_MS: int = Field(
        default=0,
        description="Server-side statement_timeout in ms (0 = unlimited)"
    )

    # ==================== RECONCILIATION ====================
    IDENTIFY_STEP_DELAY_MS: int = Field(
        default=0,
        description="Artificial delay between reconciliation steps, used to widen race windows in tests"
    )

    # ==================== OBSERVABILITY ====================
    SENTRY_DSN: str = Field(
        default="",
        description="Sentry DSN for error tracking"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR"
    )

    # ==================== API ====================
    API_TITLE: str = Field(
        default="Identity Reconciliation API",
        description="API title for OpenAPI docs"
    )
    API_VERSION: str = Field(
        default="1.0.0",
        description="API version"
    )

    # ==================== COMPUTED PROPERTIES ====================

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def debug_enabled(self) -> bool:
        """Enable debug in development or when explicitly set"""
        return self.DEBUG or self.is_development

    def validate_production_config(self) -> List[str]:
        """
        Validate configuration for production deployment.
        Returns list of validation errors.
        """
        errors = []

        if not self.DATABASE_URL:
            errors.append("DATABASE_URL is not set")

        if self.is_production:
            if "localhost" in self.DATABASE_URL.lower():
                errors.append("DATABASE_URL cannot point to localhost in production")

            if self.DEBUG:
                errors.append("DEBUG should be False in production")

            if self.IDENTIFY_STEP_DELAY_MS > 0:
                errors.append("IDENTIFY_STEP_DELAY_MS must be 0 in production")

        return errors

    def get_database_url(self) -> str:
        """
        Get the database URL with the asyncpg driver.

        Plain postgres:// and postgresql:// URLs are rewritten so the
        async engine never picks up a sync driver.
        """
        url = self.DATABASE_URL
        if not url:
            raise ValueError("No database configuration found. Set DATABASE_URL.")

        if url.startswith("postgresql://"):
            return url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if url.startswith("postgres://"):
            return url.replace("postgres://", "postgresql+asyncpg://", 1)
        return url


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Settings are loaded once and cached for the application lifetime.
    """
    settings = Settings()

    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug: {settings.debug_enabled}")

    if settings.is_production:
        errors = settings.validate_production_config()
        if errors:
            for error in errors:
                logger.error(f"Configuration error: {error}")
            raise ValueError(f"Production configuration invalid: {', '.join(errors)}")

    return settings


# ==================== ENVIRONMENT VALIDATION ====================

def validate_environment(settings: Settings = None) -> dict:
    """
    Validate all required environment variables.

    Returns a status dict with validation results.
    """
    settings = settings or get_settings()

    status = {
        "valid": True,
        "environment": settings.ENVIRONMENT,
        "errors": [],
        "warnings": [],
        "variables": {}
    }

    if not settings.DATABASE_URL:
        status["errors"].append("DATABASE_URL is not set")
        status["valid"] = False
    else:
        status["variables"]["DATABASE_URL"] = "✓ Set"

    if not settings.SENTRY_DSN:
        status["warnings"].append("Error tracking disabled")
        status["variables"]["SENTRY_DSN"] = "⚠ Not set"
    else:
        status["variables"]["SENTRY_DSN"] = "✓ Set"

    if settings.IDENTIFY_STEP_DELAY_MS > 0:
        status["warnings"].append(
            f"IDENTIFY_STEP_DELAY_MS is {settings.IDENTIFY_STEP_DELAY_MS}ms; requests are artificially slowed"
        )

    errors = [e for e in settings.validate_production_config() if e not in status["errors"]]
    if settings.is_production and errors:
        status["errors"].extend(errors)
        status["valid"] = False

    return status
