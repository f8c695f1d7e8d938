"""
app/core/config.py

Purpose: Application configuration

- Loads environment variables
- Centralizes config values (directories, session bridge, logging)
- Validates configuration on startup
- Environment-specific settings
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, Literal


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Validates all required configs on startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Environment
    ENVIRONMENT: Literal["development", "staging", "production"] = "development"

    # Server
    HOST: str = Field(
        default="0.0.0.0",
        description="Interface the HTTP server binds to"
    )
    PORT: int = Field(
        default=3000,
        description="HTTP server port"
    )

    # Storage roots
    AUTH_DIR: str = Field(
        default="./auth",
        description="Root directory for per-instance session credentials"
    )
    LOG_DIR: str = Field(
        default="./logs",
        description="Directory for daily log files"
    )

    # Session bridge (hosts the real messaging clients)
    SESSION_BRIDGE_URL: str = Field(
        default="http://localhost:8080",
        description="Base URL of the session bridge sidecar"
    )
    SESSION_BRIDGE_TOKEN: Optional[str] = Field(
        default=None,
        description="Bearer token sent to the session bridge"
    )
    SESSION_BRIDGE_TIMEOUT: float = Field(
        default=30.0,
        description="Session bridge request timeout in seconds"
    )
    SESSION_POLL_INTERVAL: float = Field(
        default=2.0,
        description="Seconds between session state polls"
    )

    # Messaging
    INVITE_LINK_BASE: str = Field(
        default="https://chat.whatsapp.com/",
        description="Prefix used to turn invite codes into links"
    )

    # Application
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    LOG_FORMAT: Literal["text", "json"] = Field(
        default="text",
        description="Console log format"
    )
    CORS_ORIGINS: list = Field(
        default=["*"],
        description="Allowed CORS origins"
    )

    @field_validator("SESSION_BRIDGE_TIMEOUT", "SESSION_POLL_INTERVAL")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        """Timeouts and intervals must be positive."""
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"


# Global settings instance
settings = Settings()


def validate_settings(config: Optional[Settings] = None):
    """
    Validates critical settings on application startup.
    Raises ValueError if any required setting is missing or invalid.
    """
    config = config or settings
    errors = []

    if not config.AUTH_DIR:
        errors.append("AUTH_DIR is required")

    if not config.LOG_DIR:
        errors.append("LOG_DIR is required")

    if not config.SESSION_BRIDGE_URL:
        errors.append("SESSION_BRIDGE_URL is required")

    # Production-specific validations
    if config.is_production and not config.SESSION_BRIDGE_TOKEN:
        errors.append("SESSION_BRIDGE_TOKEN is required in production")

    if errors:
        raise ValueError(f"Configuration validation failed: {', '.join(errors)}")

    return True
