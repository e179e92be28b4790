"""
AgentX Engine - Configuration

SINGLE SOURCE OF TRUTH for runtime settings. Loaded from the process
environment with a fallback env file (ENV_FILE, default ".env").

REQUIRED for application startup (no defaults, missing = fatal):
  DATABASE_URL             - Postgres connection string
  JWT_SECRET               - HS256 secret for access tokens
  JWT_REFRESH_SECRET       - HS256 secret for refresh tokens (must differ)

Environment control:
  ENVIRONMENT              - dev | staging | prod (default: dev)
  LOG_LEVEL                - DEBUG | INFO | WARNING | ERROR (default: INFO)

Tuning:
  ACCESS_TOKEN_TTL_MINUTES - access cookie lifetime (default: 15)
  REFRESH_TOKEN_TTL_DAYS   - refresh cookie lifetime (default: 7)
  AGENTX_CORS_ORIGINS      - comma-separated CORS origins
  MAX_UPLOAD_BYTES         - upload size ceiling (default: 10 MiB)
  DB_POOL_MIN_SIZE / DB_POOL_MAX_SIZE

Usage:
    from agentx.config import get_settings

    settings = get_settings()
    print(settings.DATABASE_URL)
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Any, Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings for the API and the CLI.

    Secrets have no fallback values: a missing secret fails validation
    instead of silently signing tokens with a constant.
    """

    model_config = SettingsConfigDict(
        env_file=os.environ.get("ENV_FILE", ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # =========================================================================
    # REQUIRED
    # =========================================================================

    DATABASE_URL: str = Field(..., description="Postgres connection string")
    JWT_SECRET: str = Field(
        ...,
        min_length=16,
        description="HS256 signing secret for access tokens",
    )
    JWT_REFRESH_SECRET: str = Field(
        ...,
        min_length=16,
        description="HS256 signing secret for refresh tokens",
    )

    # =========================================================================
    # ENVIRONMENT CONTROL
    # =========================================================================

    ENVIRONMENT: Literal["dev", "staging", "prod"] = Field(
        default="dev",
        description="Deployment environment",
    )
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # =========================================================================
    # AUTH
    # =========================================================================

    ACCESS_TOKEN_TTL_MINUTES: int = Field(default=15, ge=1)
    REFRESH_TOKEN_TTL_DAYS: int = Field(default=7, ge=1)

    # =========================================================================
    # HTTP
    # =========================================================================

    AGENTX_CORS_ORIGINS: str | None = Field(
        default=None,
        description="Comma-separated CORS origins",
    )
    MAX_UPLOAD_BYTES: int = Field(default=10 * 1024 * 1024, ge=1)
    HOST: str = Field(default="0.0.0.0", description="Server host")
    PORT: int = Field(default=5000, description="Server port")

    # =========================================================================
    # DATABASE POOL
    # =========================================================================

    DB_POOL_MIN_SIZE: int = Field(default=1, ge=0)
    DB_POOL_MAX_SIZE: int = Field(default=10, ge=1)

    # =========================================================================
    # VALIDATION & NORMALIZATION
    # =========================================================================

    @model_validator(mode="before")
    @classmethod
    def _normalize_values(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Strip whitespace/quotes and normalize ENVIRONMENT aliases."""
        for key, value in list(values.items()):
            if isinstance(value, str):
                values[key] = value.strip().strip('"').strip("'").strip()

        for key in ("ENVIRONMENT", "environment"):
            if key in values:
                raw = str(values[key]).lower()
                if raw == "production":
                    values[key] = "prod"
                elif raw == "development":
                    values[key] = "dev"
                else:
                    values[key] = raw

        for key in ("LOG_LEVEL", "log_level"):
            if key in values:
                values[key] = str(values[key]).upper()

        return values

    @model_validator(mode="after")
    def _distinct_secrets(self) -> "Settings":
        if self.JWT_SECRET == self.JWT_REFRESH_SECRET:
            raise ValueError("JWT_SECRET and JWT_REFRESH_SECRET must be different")
        if self.DB_POOL_MIN_SIZE > self.DB_POOL_MAX_SIZE:
            raise ValueError("DB_POOL_MIN_SIZE cannot exceed DB_POOL_MAX_SIZE")
        return self

    # =========================================================================
    # DERIVED VALUES
    # =========================================================================

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "prod"

    @property
    def cors_allowed_origins(self) -> list[str]:
        """Parse AGENTX_CORS_ORIGINS into a list."""
        if self.AGENTX_CORS_ORIGINS:
            origins = []
            for o in self.AGENTX_CORS_ORIGINS.replace(",", " ").split():
                o = o.strip().rstrip("/")
                if o.startswith("http"):
                    origins.append(o)
            if origins:
                return origins
        return ["http://localhost:3000"]


# =========================================================================
# SINGLETON & FACTORY
# =========================================================================


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()  # type: ignore[call-arg]


def reset_settings() -> None:
    """Clear the cached settings (for testing)."""
    get_settings.cache_clear()


# =========================================================================
# LOGGING CONFIGURATION
# =========================================================================


def configure_logging(settings: Settings | None = None) -> None:
    """
    Configure application logging based on settings.

    In production, uses structured JSON logging for observability.
    In development, uses colored console output.
    """
    if settings is None:
        settings = get_settings()

    from agentx.core.logging import configure_structured_logging

    configure_structured_logging(
        level=settings.LOG_LEVEL,
        json_output=settings.is_production,
        service_name="agentx",
    )

    logging.getLogger("psycopg.pool").setLevel(logging.WARNING)
    logging.getLogger("multipart").setLevel(logging.WARNING)


# =========================================================================
# STARTUP VALIDATION
# =========================================================================

REQUIRED_ENV_VARS = [
    "DATABASE_URL",
    "JWT_SECRET",
    "JWT_REFRESH_SECRET",
]

RECOMMENDED_PROD_VARS = [
    "AGENTX_CORS_ORIGINS",
]


def validate_required_env(fail_fast: bool = True) -> dict[str, Any]:
    """
    Validate required settings and log a startup report.

    A variable counts as present when it is set in the environment or
    resolvable from the env file through Settings.

    Raises:
        RuntimeError: If fail_fast=True and required vars are missing
    """
    result: dict[str, Any] = {
        "valid": True,
        "present": [],
        "missing": [],
        "warnings": [],
    }

    file_values: dict[str, Any] = {}
    try:
        file_values = get_settings().model_dump()
    except Exception as e:
        # Settings failed to load; fall back to the raw environment below
        result["warnings"].append(f"Settings failed to load: {e}")

    for var in REQUIRED_ENV_VARS:
        value = os.environ.get(var) or file_values.get(var)
        if value and str(value).strip():
            result["present"].append(var)
        else:
            result["missing"].append(var)

    env = str(file_values.get("ENVIRONMENT") or os.environ.get("ENVIRONMENT", "dev")).lower()
    if env == "prod":
        for var in RECOMMENDED_PROD_VARS:
            if not (os.environ.get(var) or file_values.get(var)):
                result["warnings"].append(f"{var} not set (recommended for production)")

    if result["missing"]:
        result["valid"] = False

    logger.info("AgentX startup configuration: environment=%s", env.upper())
    if result["present"]:
        logger.info("Present: %s", ", ".join(result["present"]))
    if result["missing"]:
        logger.error("MISSING: %s", ", ".join(result["missing"]))
    for warning in result["warnings"]:
        logger.warning(warning)

    if fail_fast and not result["valid"]:
        missing_str = ", ".join(result["missing"])
        raise RuntimeError(
            f"Missing required environment variables: {missing_str}. "
            f"Set these in your environment or .env file."
        )

    return result
