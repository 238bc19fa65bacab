"""Application configuration via Pydantic BaseSettings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Database -- empty means the commerce store is not configured
    DATABASE_URL: str = ""

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # JWT Authentication (admin access to sync endpoints)
    JWT_SECRET_KEY: str = "CHANGE-ME-IN-PRODUCTION-use-openssl-rand-hex-32"
    JWT_ALGORITHM: str = "HS256"

    # CORS
    CORS_ALLOWED_ORIGINS: str = "*"

    # Monitoring
    SENTRY_DSN: str = ""

    # Zoho OAuth client + seed values. Written into the token store on startup
    # only where the stored row is still empty.
    ZOHO_CLIENT_ID: str = ""
    ZOHO_CLIENT_SECRET: str = ""
    ZOHO_REDIRECT_URI: str = ""
    ZOHO_ORGANIZATION_ID: str = ""
    ZOHO_ACCESS_TOKEN: str = ""
    ZOHO_REFRESH_TOKEN: str = ""

    # Zoho endpoints (India datacenter by default)
    ZOHO_ACCOUNTS_URL: str = "https://accounts.zoho.in"
    ZOHO_INVENTORY_API_URL: str = "https://www.zohoapis.in/inventory/v1"
    ZOHO_CRM_API_URL: str = "https://www.zohoapis.in/crm/v3"
    ZOHO_HTTP_TIMEOUT: int = 30
    ZOHO_MAX_RETRIES: int = 3

    # Batch pacing
    SYNC_BATCH_SIZE: int = 50
    SYNC_BATCH_DELAY_MS: int = 1000

    def is_database_configured(self) -> bool:
        """Return True when a database URL has been provided."""
        return bool(self.DATABASE_URL.strip())


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
