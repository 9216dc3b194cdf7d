"""Application settings loaded from the environment / .env"""
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration with environment variable support"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_NAME: str = "Dormitory Reservation API"
    ENVIRONMENT: str = "development"

    # Security
    SECRET_KEY: str = "change-me-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = Field(default="text", pattern="^(text|json)$")

    # Risk sweep worker
    SWEEP_ENABLED: bool = False
    SWEEP_INTERVAL_SECONDS: int = Field(default=3600, ge=1)
    SWEEP_ERROR_BACKOFF_SECONDS: int = Field(default=60, ge=1)

    # Lifecycle defaults
    DEFAULT_EXTENSION_DAYS: int = Field(default=3, ge=1)

    # Seed account for the in-memory user store
    SEED_ADMIN_USERNAME: str = "admin"
    SEED_ADMIN_PASSWORD: str = "admin123"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
