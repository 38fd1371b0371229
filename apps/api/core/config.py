"""
Centralized configuration management with validation.

All environment variables are loaded and validated here.
This ensures consistent configuration across the engine.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation."""

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # Database Configuration
    DATABASE_URL: str = Field(default="sqlite:///habit_engine.db")
    DB_ECHO: bool = Field(default=False)

    # Database Pool Configuration (ignored for SQLite)
    DB_POOL_SIZE: int = Field(default=20)
    DB_MAX_OVERFLOW: int = Field(default=10)
    DB_POOL_TIMEOUT: int = Field(default=30)
    DB_POOL_RECYCLE: int = Field(default=3600)  # 1 hour

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # Calendar days (completion buckets, streaks, daily scores) are cut in this zone.
    TIMEZONE: str = Field(default="UTC")

    # Read-path limits
    STREAK_LOOKBACK_DAYS: int = Field(default=365, ge=1)
    COMPLETION_HISTORY_MAX_LIMIT: int = Field(default=100, ge=1)
    DAILY_SCORE_HISTORY_MAX_DAYS: int = Field(default=365, ge=1)

    # Mind score blends meditation/reading/learning only unless this is on.
    # Pending product confirmation on whether journaling should count.
    SCORING_INCLUDE_JOURNALING: bool = Field(default=False)


# Global settings instance
settings = Settings()
