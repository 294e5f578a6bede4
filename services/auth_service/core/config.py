from functools import lru_cache

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import structlog

logger = structlog.get_logger()


class Settings(BaseSettings):
    """
    Auth Service Configuration

    Signing secrets and the database URL MUST be provided via environment
    variables. The service fails fast if they are missing or unsafe.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
        validate_assignment=True,
    )

    # Application settings
    APP_NAME: str = "Auth Service"
    SERVICE_NAME: str = "auth-service"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "production"
    API_V1_STR: str = "/api/v1"

    # Database - REQUIRED
    DATABASE_URL: str = Field(...)
    DATABASE_POOL_SIZE: int = Field(default=20, ge=1, le=200)
    DATABASE_MAX_OVERFLOW: int = Field(default=40, ge=0, le=200)
    DATABASE_POOL_RECYCLE: int = Field(default=1800, ge=300, le=3600)

    # Token signing - REQUIRED, NO DEFAULTS
    JWT_SECRET: str = Field(..., min_length=16)
    JWT_REFRESH_SECRET: str = Field(..., min_length=16)
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=15, ge=1, le=60)
    REFRESH_TOKEN_EXPIRE_DAYS: int = Field(default=7, ge=1, le=30)

    # Password hashing
    BCRYPT_ROUNDS: int = Field(default=12, ge=4, le=16)

    # Brute-force lockout
    MAX_FAILED_LOGIN_ATTEMPTS: int = Field(default=5, ge=1)
    LOCKOUT_DURATION_MINUTES: int = Field(default=15, ge=1)

    # Length of generated temporary passwords for admin-created users
    TEMP_PASSWORD_LENGTH: int = Field(default=16, ge=12, le=64)

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        valid_envs = ["development", "test", "staging", "production"]
        if v not in valid_envs:
            raise ValueError(f"ENVIRONMENT must be one of: {valid_envs}")
        return v

    @field_validator("JWT_ALGORITHM")
    @classmethod
    def validate_algorithm(cls, v: str) -> str:
        if not v.startswith("HS"):
            raise ValueError("Only HMAC signing algorithms are supported")
        return v

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Access and refresh tokens must not be interchangeable"""
        if self.JWT_SECRET == self.JWT_REFRESH_SECRET:
            raise ValueError("JWT_SECRET and JWT_REFRESH_SECRET must differ")

        if self.ENVIRONMENT == "production":
            weak_values = ["change-me", "secret", "password", "12345"]
            for name in ("JWT_SECRET", "JWT_REFRESH_SECRET"):
                value = getattr(self, name)
                if len(value) < 32:
                    raise ValueError(f"{name} must be at least 32 characters long in production")
                if any(weak in value.lower() for weak in weak_values):
                    raise ValueError(f"{name} contains weak or default values")
            if self.DEBUG:
                raise ValueError("DEBUG must be False in production")
        return self


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Fails fast if required environment variables are missing.
    """
    try:
        return Settings()
    except ValidationError as e:
        logger.error("Failed to load settings", errors=e.errors(include_url=False))
        raise


# Initialize settings on module import
settings = get_settings()
