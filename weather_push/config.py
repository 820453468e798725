"""Configuration management for the application."""

from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database (saved locations and weather cache)
    database_url: str = Field(default="sqlite:///./weather_push.db")

    # Redis (connection registry and Celery broker)
    redis_url: str = Field(default="redis://localhost:6379/0")
    registry_key_prefix: str = Field(default="wx")
    service_type: str = Field(default="weather-updates")
    connection_ttl_hours: int = Field(default=24)

    # JWT
    jwt_secret: str | None = Field(default=None)
    jwt_algorithm: str = Field(default="HS256")
    jwt_expiration_minutes: int = Field(default=1440)  # 24 hours

    # Weather provider (weatherapi.com)
    weather_api_key: str | None = Field(default=None)
    weather_api_base_url: str = Field(default="https://api.weatherapi.com/v1")
    weather_api_timeout: float = Field(default=10.0)
    weather_cache_freshness_seconds: int = Field(default=300)
    weather_batch_deadline_seconds: float = Field(default=20.0)

    # Retry and deadline policy for external calls
    registry_max_attempts: int = Field(default=3)
    registry_base_delay_seconds: float = Field(default=0.1)
    registry_deadline_seconds: float = Field(default=15.0)
    delivery_max_attempts: int = Field(default=3)
    delivery_base_delay_seconds: float = Field(default=0.1)
    delivery_deadline_seconds: float = Field(default=30.0)
    provider_max_attempts: int = Field(default=3)
    provider_base_delay_seconds: float = Field(default=0.1)

    # Push transport (API Gateway WebSocket management endpoint)
    websocket_api_endpoint: str | None = Field(default=None)
    aws_region: str = Field(default="us-east-1")

    # Background tasks
    broadcast_interval_seconds: int = Field(default=300)

    # API
    cors_origins: list[str] = Field(default=["http://localhost:3000"])
    log_level: str = Field(default="INFO")
    environment: str = Field(default="development")

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Validate that production has secure settings."""
        if self.environment == "production":
            if not self.jwt_secret:
                raise ValueError("JWT_SECRET must be set in production")
            if "localhost" in self.redis_url:
                raise ValueError("REDIS_URL should not use localhost in production")
            if not self.websocket_api_endpoint:
                raise ValueError("WEBSOCKET_API_ENDPOINT is required in production")
        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
