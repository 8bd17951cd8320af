from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings."""

    # Application
    ENVIRONMENT: Literal["local", "development", "production", "test"] = "local"
    LOG_LEVEL: str = "INFO"
    ADMIN_EMAIL: str = "admin@example.com"
    FRONTEND_URL: str = "http://localhost:3000"

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800

    # Redis (arq worker + shared cache)
    REDIS_URL: str = "redis://localhost:6379/0"
    CACHE_BACKEND: Literal["memory", "redis"] = "memory"
    CATEGORY_CACHE_TTL_SECONDS: int = 60
    SPECIAL_PRODUCTS_CACHE_TTL_SECONDS: int = 300

    # Auth
    JWT_SECRET: str = "test-jwt-secret"
    JWT_ALGORITHM: str = "HS256"

    # Catalog maintenance
    QUARANTINE_CATEGORY_ID: str = "00000000-0000-0000-0000-00000000d31e"
    QUARANTINE_CATEGORY_NAME: str = "deletedCategories"
    DISPLAY_ORDER_REPAIR_INTERVAL_HOURS: int = 24

    # Cart reminders
    CART_REMINDER_INACTIVITY_DAYS: int = 3
    CART_REMINDER_MAX_COUNT: int = 3

    # Payments (Stripe)
    STRIPE_SECRET_KEY: str = ""
    STRIPE_API_BASE: str = "https://api.stripe.com/v1"
    PAYMENT_CURRENCY: str = "usd"
    PAYMENT_TIMEOUT_SECONDS: float = 30.0

    # Object storage (S3)
    S3_BUCKET_NAME: str = "commerce-media"
    AWS_REGION: str = "us-east-1"
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    S3_PRESIGN_EXPIRY_SECONDS: int = 900

    # Mailing list (Mailchimp)
    MAILCHIMP_API_KEY: str = ""
    MAILCHIMP_SERVER_PREFIX: str = "us1"
    MAILCHIMP_AUDIENCE_ID: str = ""

    # Microservices URLs
    COMMUNICATIONS_SERVICE_URL: str = "http://communications-service:8004"

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("DATABASE_URL")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str]) -> str:
        if isinstance(v, str):
            if v.startswith("postgresql://"):
                return v.replace("postgresql://", "postgresql+psycopg://", 1)
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """
    Return the global settings instance, cached.
    """
    return Settings()
