from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Environment mode: dev or prod
    ENV: Literal["dev", "prod"] = "dev"

    # Database
    DATABASE_URL: str

    # Price feed (CoinGecko /coins/markets)
    COINGECKO_BASE_URL: str = "https://api.coingecko.com/api/v3"
    COINGECKO_API_KEY: str | None = None
    FEED_CURRENCY: str = "usd"
    FEED_PRICE_CHANGE_WINDOWS: str = "24h,7d"
    FEED_PAGE_SIZE: int = 250
    FEED_MAX_ASSETS: int = 250  # top-N by market cap pulled per sync pass
    FEED_TIMEOUT_SECONDS: float = 30.0
    FEED_MAX_ATTEMPTS: int = 3
    FEED_RETRY_BASE_SECONDS: float = 2.0
    FEED_MAX_RETRY_AFTER_SECONDS: float = 120.0  # cap on a server-sent Retry-After
    FEED_MIN_CALL_INTERVAL_SECONDS: float = 1.1  # ~60 calls/minute free tier

    # Sync scheduling
    SYNC_ENABLED: bool = True  # Enable/disable the in-process scheduler
    SYNC_INTERVAL_SECONDS: int = 60 * 60
    SYNC_STARTUP_DELAY_SECONDS: float = 5.0
    SYNC_SHUTDOWN_GRACE_SECONDS: float = 30.0
    SYNC_DATA_SOURCE_LABEL: str = "CoinGecko API"

    # Analytics
    DOMINANCE_PRIMARY_ID: str = "bitcoin"
    DOMINANCE_SECONDARY_ID: str = "ethereum"
    HEALTH_MAX_SYNC_ERRORS: int = 3

    # Logging
    LOG_LEVEL: str = "INFO"
    SLACK_WEBHOOK_URL: str | None = None

    # Docs Configuration
    DOCS_ENABLED: bool | None = None  # Override docs setting (None = auto based on ENV)

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",  # ignore unrelated keys in local .env
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENV == "prod"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENV == "dev"

    @property
    def debug_enabled(self) -> bool:
        """Debug mode is only enabled in development."""
        return self.is_development

    @property
    def effective_log_level(self) -> str:
        """Return appropriate log level based on environment."""
        if self.is_production:
            # In production, minimum INFO level (ignore DEBUG)
            return self.LOG_LEVEL if self.LOG_LEVEL.upper() != "DEBUG" else "INFO"
        return self.LOG_LEVEL

    @property
    def docs_enabled(self) -> bool:
        """Swagger/ReDoc docs enabled based on environment or override."""
        if self.DOCS_ENABLED is not None:
            return self.DOCS_ENABLED
        return self.is_development

    @property
    def feed_page_size(self) -> int:
        """Page size actually requested, never larger than the asset cap."""
        return max(1, min(self.FEED_PAGE_SIZE, self.FEED_MAX_ASSETS))


settings = Settings()
