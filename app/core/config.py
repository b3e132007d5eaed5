"""
app/core/config.py

Purpose: Application configuration

- Loads environment variables
- Centralizes config values (DB URI, bot token, completion API, budgets)
- Validates configuration on startup
- Environment-specific settings
"""

from pydantic import Field, validator
from pydantic_settings import BaseSettings
from typing import Optional, Literal


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Validates all required configs on startup.
    """

    # Environment
    ENVIRONMENT: Literal["development", "staging", "production"] = "development"

    # MongoDB
    MONGODB_URL: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB connection URI"
    )
    MONGODB_DB_NAME: str = Field(
        default="nutripal",
        description="MongoDB database name"
    )

    # Telegram
    TELEGRAM_BOT_TOKEN: Optional[str] = Field(
        default=None,
        description="Telegram Bot API token"
    )
    TELEGRAM_API_URL: str = Field(
        default="https://api.telegram.org",
        description="Telegram Bot API base URL"
    )
    TELEGRAM_WEBHOOK_SECRET: Optional[str] = Field(
        default=None,
        description="Expected X-Telegram-Bot-Api-Secret-Token header value"
    )
    SERVER_URL: Optional[str] = Field(
        default=None,
        description="Public base URL; when set the webhook is registered on startup"
    )

    # Completion service (OpenAI-compatible)
    OPENAI_API_KEY: Optional[str] = Field(
        default=None,
        description="API key for the completion service"
    )
    OPENAI_BASE_URL: str = Field(
        default="https://api.openai.com/v1",
        description="Completion service base URL"
    )
    OPENAI_MODEL: str = Field(
        default="gpt-4o-mini",
        description="Chat completion model"
    )
    OPENAI_TRANSCRIBE_MODEL: str = Field(
        default="whisper-1",
        description="Speech-to-text model"
    )

    # Collaborator time budgets
    COMPLETION_TIMEOUT_MS: int = Field(
        default=60000,
        description="Budget for a single completion request in milliseconds"
    )
    STORE_TIMEOUT_MS: int = Field(
        default=5000,
        description="Budget for a single store operation in milliseconds"
    )
    TRANSPORT_TIMEOUT_SECONDS: float = Field(
        default=15.0,
        description="HTTP timeout for Telegram requests"
    )

    # Rate Limiting
    RATE_LIMIT_MESSAGES_PER_WINDOW: int = Field(
        default=20,
        description="Maximum events per user per window"
    )
    RATE_LIMIT_WINDOW_SECONDS: int = Field(
        default=60,
        description="Length of the rolling rate-limit window"
    )

    # Confirmation tokens
    CONFIRMATION_TTL_MINUTES: int = Field(
        default=30,
        description="Lifetime of an unconsumed confirmation token"
    )

    # Scheduler
    SCHEDULER_ENABLED: bool = Field(
        default=True,
        description="Run background jobs in this process"
    )
    SCHEDULER_TIMEZONE: str = Field(
        default="Europe/Moscow",
        description="Timezone for all cron triggers"
    )
    DAILY_REPORT_CRON: str = Field(default="0 21 * * *")
    HEALTH_PROBE_CRON: str = Field(default="*/30 * * * *")
    MAINTENANCE_CRON: str = Field(default="0 * * * *")
    CHALLENGE_CREATE_CRON: str = Field(default="0 9 * * 1")
    CHALLENGE_REMIND_CRON: str = Field(default="0 18 * * 3,6")

    # Application
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    API_PREFIX: str = Field(
        default="/api/v1",
        description="API route prefix"
    )
    CORS_ORIGINS: list = Field(
        default=["*"],
        description="Allowed CORS origins"
    )

    @validator("TELEGRAM_BOT_TOKEN")
    def validate_bot_token(cls, v, values):
        """Ensure the bot token is set in production."""
        if values.get("ENVIRONMENT") == "production" and not v:
            raise ValueError("TELEGRAM_BOT_TOKEN is required in production environment")
        return v

    @validator("RATE_LIMIT_MESSAGES_PER_WINDOW", "RATE_LIMIT_WINDOW_SECONDS")
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("rate limit settings must be positive")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    class Config:
        env_file = ".env"
        case_sensitive = True
        env_file_encoding = "utf-8"


# Global settings instance
settings = Settings()


def validate_settings():
    """
    Validates critical settings on application startup.
    Raises ValueError if any required setting is missing or invalid.
    """
    errors = []

    if not settings.MONGODB_URL:
        errors.append("MONGODB_URL is required")

    if not settings.TELEGRAM_BOT_TOKEN:
        errors.append("TELEGRAM_BOT_TOKEN is required")

    # Production-specific validations
    if settings.is_production:
        if not settings.OPENAI_API_KEY:
            errors.append("OPENAI_API_KEY is required in production")
        if not settings.TELEGRAM_WEBHOOK_SECRET:
            errors.append("TELEGRAM_WEBHOOK_SECRET is required in production")

    if errors:
        raise ValueError(f"Configuration validation failed: {', '.join(errors)}")

    return True
