"""
Centralized application settings using Pydantic.
All configuration is loaded from environment variables.
"""
from pydantic_settings import BaseSettings
from typing import Optional, List
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "BoutiqueReviews"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production

    # Database
    DATABASE_URL: str = "sqlite:///./data/reviews.db"

    # Public base URL (OAuth redirect URIs, Square notification URL)
    APP_BASE_URL: str = "http://localhost:8000"

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8000", "http://127.0.0.1:8000"]

    # Token encryption - 64 hex characters (32 bytes)
    ENCRYPTION_KEY: Optional[str] = None

    # Square Integration
    SQUARE_APP_ID: Optional[str] = None
    SQUARE_APP_SECRET: Optional[str] = None
    SQUARE_WEBHOOK_SIGNATURE_KEY: Optional[str] = None
    SQUARE_ENVIRONMENT: str = "sandbox"

    # Shopify Integration
    SHOPIFY_CLIENT_ID: Optional[str] = None
    SHOPIFY_CLIENT_SECRET: Optional[str] = None
    SHOPIFY_WEBHOOK_SECRET: Optional[str] = None  # Defaults to the client secret
    SHOPIFY_API_VERSION: str = "2025-01"

    # Lightspeed Integration
    LIGHTSPEED_CLIENT_ID: Optional[str] = None
    LIGHTSPEED_CLIENT_SECRET: Optional[str] = None
    LIGHTSPEED_WEBHOOK_SECRET: Optional[str] = None

    # Provider calls
    POS_HTTP_TIMEOUT_SECONDS: float = 30.0
    TOKEN_REFRESH_WINDOW_HOURS: int = 24
    OAUTH_STATE_MAX_AGE_SECONDS: int = 3600

    # Sentry Error Monitoring
    SENTRY_DSN: Optional[str] = None

    # Stalled webhook monitor
    WEBHOOK_MONITOR_ENABLED: bool = True
    WEBHOOK_STALL_MINUTES: int = 15

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
