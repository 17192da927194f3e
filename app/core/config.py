"""
app/core/config.py

Purpose: Application configuration

- Loads environment variables
- Centralizes config values (store backend, API keys, TTLs)
- Validates configuration on startup
- Environment-specific settings
"""

from pydantic import Field, validator
from pydantic_settings import BaseSettings
from typing import List, Optional, Literal


def _split_csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Validates all required configs on startup.
    """

    # Environment
    ENVIRONMENT: Literal["development", "staging", "production"] = "development"

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
    APP_URL: str = Field(
        default="http://localhost:8000",
        description="Public base URL (magic links and origin checks)"
    )

    # Persistence
    STORE_BACKEND: Literal["mongo", "memory"] = Field(
        default="memory",
        description="Key-value store backend: mongo (durable) or memory (single process)"
    )
    MONGODB_URL: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB connection URI"
    )
    MONGODB_DB_NAME: str = Field(
        default="tabletext",
        description="MongoDB database name"
    )
    MONGODB_COLLECTION: str = Field(
        default="kv_store",
        description="Collection holding every key-value record"
    )

    # Security
    CREDENTIAL_ENCRYPTION_KEY: Optional[str] = Field(
        default=None,
        description="64 hex chars (32 bytes) used for AES-256-GCM credential encryption"
    )

    # Reservation platform (Resy)
    RESY_API_KEY: str = Field(
        default="VbWk7s3L4KiK5fzlO7JD3Q5EYolJI7n5",
        description="Public Resy API key sent on every request"
    )
    RESY_BASE_URL: str = Field(
        default="https://api.resy.com",
        description="Resy API base URL"
    )
    RESY_TIMEOUT_SECONDS: float = Field(
        default=15.0,
        description="Hard timeout for every Resy request"
    )
    RESY_AUTH_TOKEN: Optional[str] = Field(
        default=None,
        description="Global fallback Resy credential"
    )
    DEFAULT_LATITUDE: float = Field(default=40.7128, description="Default search latitude")
    DEFAULT_LONGITUDE: float = Field(default=-74.0060, description="Default search longitude")

    # Messaging gateway (Linq)
    LINQ_API_TOKEN: Optional[str] = Field(
        default=None,
        description="Bearer token for the Linq messaging API"
    )
    LINQ_API_BASE_URL: str = Field(
        default="https://api.linqapp.com/api/partner/v3",
        description="Linq API base URL"
    )
    LINQ_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Linq request timeout in seconds"
    )
    BOT_NUMBERS: Optional[str] = Field(
        default=None,
        description="Comma-separated numbers this bot answers on"
    )
    ALLOWED_SENDERS: Optional[str] = Field(
        default=None,
        description="Comma-separated allow-list of sender handles"
    )
    IGNORED_SENDERS: Optional[str] = Field(
        default=None,
        description="Comma-separated deny-list of sender handles"
    )

    # LLM
    ANTHROPIC_API_KEY: Optional[str] = Field(
        default=None,
        description="Anthropic API key"
    )
    CLAUDE_MODEL: str = Field(
        default="claude-sonnet-4-5",
        description="Model used for the conversational tool loop"
    )
    CLAUDE_FAST_MODEL: str = Field(
        default="claude-haiku-4-5",
        description="Cheap model for group classification and effect text"
    )
    CLAUDE_MAX_TOKENS: int = Field(
        default=1024,
        description="Max tokens per model call"
    )
    MAX_TOOL_LOOPS: int = Field(
        default=5,
        description="Upper bound on tool-result round trips per reply"
    )

    # State lifetimes
    OTP_TTL_SECONDS: int = Field(default=300, description="Pending OTP lifetime")
    CHALLENGE_TTL_SECONDS: int = Field(default=600, description="Pending challenge lifetime")
    JUST_ONBOARDED_TTL_SECONDS: int = Field(default=600, description="Welcome flag lifetime")
    MAGIC_LINK_TTL_MINUTES: int = Field(default=15, description="Magic link lifetime")
    CONVERSATION_TTL_SECONDS: int = Field(default=86400, description="Conversation inactivity TTL")
    MAX_HISTORY_MESSAGES: int = Field(default=50, description="Rolling history cap per chat")
    CONTACT_CARD_INTERVAL: int = Field(
        default=5,
        description="Share the contact card on the first and every Nth message"
    )

    @validator("CREDENTIAL_ENCRYPTION_KEY")
    def validate_encryption_key(cls, v, values):
        """Key must be 32 bytes of hex; required in production."""
        if not v:
            if values.get("ENVIRONMENT") == "production":
                raise ValueError("CREDENTIAL_ENCRYPTION_KEY is required in production environment")
            return None
        if len(v) != 64:
            raise ValueError("CREDENTIAL_ENCRYPTION_KEY must be 64 hex characters (32 bytes)")
        try:
            bytes.fromhex(v)
        except ValueError:
            raise ValueError("CREDENTIAL_ENCRYPTION_KEY must be hex encoded")
        return v

    @validator("LINQ_API_TOKEN")
    def validate_linq_token(cls, v, values):
        """Ensure Linq token is set in production."""
        if values.get("ENVIRONMENT") == "production" and not v:
            raise ValueError("LINQ_API_TOKEN is required in production environment")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    @property
    def bot_numbers(self) -> List[str]:
        return _split_csv(self.BOT_NUMBERS)

    @property
    def allowed_senders(self) -> List[str]:
        return _split_csv(self.ALLOWED_SENDERS)

    @property
    def ignored_senders(self) -> List[str]:
        return _split_csv(self.IGNORED_SENDERS)

    class Config:
        env_file = ".env"
        case_sensitive = True
        env_file_encoding = "utf-8"
        extra = "ignore"


# Global settings instance
settings = Settings()


def validate_settings():
    """
    Validates critical settings on application startup.
    Raises ValueError if any required setting is missing or invalid.
    """
    errors = []

    if settings.STORE_BACKEND == "mongo" and not settings.MONGODB_URL:
        errors.append("MONGODB_URL is required for the mongo store backend")

    if not settings.RESY_BASE_URL:
        errors.append("RESY_BASE_URL is required")

    if settings.RESY_TIMEOUT_SECONDS <= 0:
        errors.append("RESY_TIMEOUT_SECONDS must be positive")

    if settings.MAX_TOOL_LOOPS < 1:
        errors.append("MAX_TOOL_LOOPS must be at least 1")

    # Production-specific validations
    if settings.is_production:
        if not settings.ANTHROPIC_API_KEY:
            errors.append("ANTHROPIC_API_KEY is required in production")
        if settings.STORE_BACKEND != "mongo":
            errors.append("STORE_BACKEND must be mongo in production")
        if not settings.CREDENTIAL_ENCRYPTION_KEY:
            errors.append("CREDENTIAL_ENCRYPTION_KEY is required in production")
        if not settings.LINQ_API_TOKEN:
            errors.append("LINQ_API_TOKEN is required in production")

    if errors:
        raise ValueError(f"Configuration validation failed: {', '.join(errors)}")

    return True
