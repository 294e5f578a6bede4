from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """User Service Configuration"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    SERVICE_NAME: str = "user-service"
    DEBUG: bool = False
    ENVIRONMENT: str = "production"

    # Database - REQUIRED
    DATABASE_URL: str = Field(...)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
