"""
Configuration Management Module

This module handles process-level configuration using Pydantic Settings.
Configuration is loaded from environment variables with strong typing and validation.

Runtime settings that users edit from the dashboard (GitLab credentials,
provider API keys, review limits) are NOT here: they live in the settings
table, see review_dashboard.database.settings.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


SUPPORTED_PROVIDERS = ("openai", "anthropic")


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All values have defaults so the service starts with a local
    SQLite database and no further configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # =========================================================================
    # Database Configuration
    # =========================================================================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./database.sqlite",
        description="SQLAlchemy async database URL (sqlite+aiosqlite or postgresql+asyncpg)"
    )

    database_echo: bool = Field(
        default=False,
        description="Echo SQL statements to the log"
    )

    # =========================================================================
    # AI Provider Defaults
    # =========================================================================
    default_ai_provider: str = Field(
        default="openai",
        description="Provider used when a project has no override"
    )

    default_ai_model: str = Field(
        default="gpt-4",
        description="Model used when a project has no override"
    )

    ai_max_tokens: int = Field(
        default=4000,
        ge=100,
        le=128000,
        description="Maximum tokens for AI response"
    )

    ai_temperature: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Temperature for AI responses"
    )

    ai_timeout_seconds: float = Field(
        default=60.0,
        ge=1.0,
        description="Timeout for a single completion request"
    )

    # =========================================================================
    # GitLab Client
    # =========================================================================
    gitlab_timeout_seconds: float = Field(
        default=30.0,
        ge=1.0,
        description="Timeout for a single GitLab API request"
    )

    gitlab_rate_limit_rpm: int = Field(
        default=600,
        ge=1,
        description="GitLab API requests allowed per minute"
    )

    gitlab_max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for idempotent GitLab requests on transport errors"
    )

    # =========================================================================
    # Server Configuration
    # =========================================================================
    host: str = Field(
        default="0.0.0.0",
        description="Host to bind the server"
    )

    port: int = Field(
        default=3001,
        ge=1,
        le=65535,
        description="Port to bind the server"
    )

    # =========================================================================
    # Logging Configuration
    # =========================================================================
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )

    log_json_format: bool = Field(
        default=True,
        description="Enable JSON logging format"
    )

    log_requests: bool = Field(
        default=False,
        description="Enable request/response logging"
    )

    # =========================================================================
    # Validators
    # =========================================================================
    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper

    @field_validator("default_ai_provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        """Ensure the default provider is one we can call."""
        v_lower = v.lower()
        if v_lower not in SUPPORTED_PROVIDERS:
            raise ValueError(f"Invalid provider: {v}. Must be one of {SUPPORTED_PROVIDERS}")
        return v_lower


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses lru_cache to ensure settings are only loaded once.

    Returns:
        Settings instance
    """
    return Settings()
