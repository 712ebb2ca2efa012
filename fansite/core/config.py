from pydantic_settings import BaseSettings
from typing import List, Optional, Union
from datetime import datetime, timezone
from pydantic import field_validator
import json


def _parse_list(v: Union[List[str], str]) -> List[str]:
    """Parse a list setting from a JSON string, a comma-separated string or a list"""
    if isinstance(v, str):
        if not v.strip():
            return []
        try:
            return json.loads(v)
        except json.JSONDecodeError:
            # If not valid JSON, split by comma
            return [item.strip() for item in v.split(",") if item.strip()]
    return v


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # API Settings
    API_PREFIX: str = "/api"
    PROJECT_NAME: str = "Silksong Fan Site Newsletter API"
    ENVIRONMENT: str = "development"  # development | test | production
    DEBUG: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    JSON_LOGS: bool = False

    # Database Settings
    POSTGRES_USER: str = "user"
    POSTGRES_PASSWORD: str = "password"
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: str = "5432"
    POSTGRES_DB: str = "fansite_db"
    DATABASE_URL_OVERRIDE: str = ""  # Full connection string (e.g. Supabase pooler URL)

    @property
    def DATABASE_URL(self) -> str:
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # Redis Settings (for Celery task queue)
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    @property
    def REDIS_URL(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # Site Settings
    SITE_URL: str = "http://localhost:3000"
    SITE_HASH_SALT: str = "silksong-fansite"
    RELEASE_DATE: datetime = datetime(2025, 9, 4, 14, 0, tzinfo=timezone.utc)

    # Resend Email Settings
    RESEND_API_KEY: str = ""
    RESEND_FROM_EMAIL: str = "newsletter@example.com"
    RESEND_FROM_NAME: str = "Silksong Fan Site"
    REPLY_TO_EMAIL: Optional[str] = None

    # Double opt-in
    PENDING_STORE_BACKEND: str = "database"  # database | filesystem
    PENDING_DIR: str = ".pending-subscriptions"
    PENDING_TOKEN_TTL_HOURS: int = 24
    SEND_WELCOME_ON_CONFIRM: bool = True

    # Email validation - can be set as JSON string or comma-separated in .env
    BLOCKED_EMAIL_DOMAINS: Union[List[str], str] = [
        "tempmail.org",
        "10minutemail.com",
        "guerrillamail.com",
        "mailinator.com",
    ]
    ALLOWED_EMAIL_DOMAINS: Union[List[str], str] = []

    # Rate limiting (production values, relaxed in development)
    SUBSCRIBE_RATE_LIMIT_MAX_REQUESTS: int = 5
    SUBSCRIBE_RATE_LIMIT_WINDOW_SECONDS: int = 900
    UNSUBSCRIBE_RATE_LIMIT_MAX_REQUESTS: int = 5
    UNSUBSCRIBE_RATE_LIMIT_WINDOW_SECONDS: int = 600
    STATS_RATE_LIMIT_MAX_REQUESTS: int = 10
    STATS_RATE_LIMIT_WINDOW_SECONDS: int = 900
    COUNT_RATE_LIMIT_MAX_REQUESTS: int = 60
    COUNT_RATE_LIMIT_WINDOW_SECONDS: int = 60
    DEVELOPMENT_RATE_LIMIT_MULTIPLIER: int = 4
    RATE_LIMIT_SWEEP_INTERVAL_SECONDS: int = 300

    # Stats API
    STATS_API_KEYS: Union[List[str], str] = []
    STATS_CACHE_TTL_SECONDS: Optional[int] = None
    COUNT_CACHE_TTL_SECONDS: int = 300

    # CORS Settings - can be set as JSON string in .env
    BACKEND_CORS_ORIGINS: Union[List[str], str] = ["http://localhost:3000", "http://localhost:8000"]

    @field_validator("BACKEND_CORS_ORIGINS", "BLOCKED_EMAIL_DOMAINS", "ALLOWED_EMAIL_DOMAINS", "STATS_API_KEYS", mode="before")
    @classmethod
    def parse_list_settings(cls, v: Union[List[str], str]) -> List[str]:
        """Parse list settings from JSON string or list"""
        return _parse_list(v)

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def stats_cache_ttl(self) -> int:
        """Stats responses are cached longer in production"""
        if self.STATS_CACHE_TTL_SECONDS is not None:
            return self.STATS_CACHE_TTL_SECONDS
        return 300 if self.is_production else 120

    @property
    def expose_error_details(self) -> bool:
        return self.DEBUG and not self.is_production

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
