"""
Application configuration settings.

All configuration is loaded from environment variables with sensible defaults.
"""
import json
from functools import lru_cache
from typing import Any

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Collector Nexus"
    api_debug: bool = True
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_prefix: str = "/api"
    cors_origins: list[str] = ["http://localhost:3000"]

    # Database
    postgres_host: str = "db"
    postgres_port: int = 5432
    postgres_user: str = "nexus_user"
    postgres_password: str = "nexus_password"
    postgres_db: str = "collector_nexus"
    database_url: str | None = None

    # Redis / Celery
    redis_url: str = "redis://redis:6379/0"
    celery_broker_url: str = "redis://redis:6379/0"
    celery_result_backend: str = "redis://redis:6379/0"

    # Data sources
    mtg_source_default: str = "scryfall"
    external_api_timeout: float = 30.0
    bulk_download_timeout: float = 60.0
    user_agent: str = "CollectorNexus/1.0"

    # Scryfall: 10 requests per second
    enable_scryfall: bool = True
    scryfall_base_url: str = "https://api.scryfall.com"
    scryfall_rate_limit_requests: int = 10
    scryfall_rate_limit_seconds: float = 1.0

    # MTGJSON: 10 requests per minute, bulk files
    enable_mtgjson: bool = True
    mtgjson_base_url: str = "https://mtgjson.com/api/v5"
    mtgjson_api_key: str = ""
    mtgjson_rate_limit_requests: int = 10
    mtgjson_rate_limit_seconds: float = 60.0

    # CardTrader: OAuth client credentials
    enable_cardtrader: bool = False
    cardtrader_base_url: str = "https://api.cardtrader.com/api/v2"
    cardtrader_auth_url: str = "https://api.cardtrader.com/oauth/token"
    cardtrader_client_id: str = ""
    cardtrader_client_secret: str = ""
    cardtrader_marketplace_id: int = 1
    cardtrader_rate_limit_requests: int = 60
    cardtrader_rate_limit_seconds: float = 60.0

    # eBay Browse API
    enable_ebay: bool = False
    ebay_base_url: str = "https://api.ebay.com"
    ebay_auth_url: str = "https://api.ebay.com/identity/v1/oauth2/token"
    ebay_app_id: str = ""
    ebay_cert_id: str = ""
    ebay_marketplace_id: str = "EBAY_US"
    ebay_rate_limit_requests: int = 5000
    ebay_rate_limit_seconds: float = 86400.0

    # Synchronization (milliseconds, matching the scheduler contract)
    mtg_full_sync_interval_ms: int = 24 * 60 * 60 * 1000
    mtg_price_sync_interval_ms: int = 12 * 60 * 60 * 1000
    mtg_batch_size: int = 100
    mtg_max_retries: int = 3
    mtg_retry_delay_ms: int = 1000
    scheduler_enabled: bool = True

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Any) -> list[str]:
        """Parse CORS origins from JSON string or list."""
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [v]
        return v

    @property
    def database_url_computed(self) -> str:
        """Compute database URL from components if not explicitly set."""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def full_sync_interval_minutes(self) -> float:
        return self.mtg_full_sync_interval_ms / 60_000

    @property
    def price_sync_interval_minutes(self) -> float:
        return self.mtg_price_sync_interval_ms / 60_000

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
