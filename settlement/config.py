"""Application configuration."""

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage: "memory" or "postgres"
    store_backend: str = "memory"
    database_url: str = "postgresql://localhost/signal_settlement"

    # Redis (shared price cache; empty = in-process cache only)
    redis_url: str = ""

    # Price oracle
    price_cache_ttl: float = 30.0
    price_stale_max_age: float = 300.0
    http_timeout: float = 5.0
    dexscreener_url: str = "https://api.dexscreener.com"
    coingecko_url: str = "https://api.coingecko.com/api/v3"
    yahoo_url: str = "https://query1.finance.yahoo.com"
    yahoo_search_url: str = "https://query2.finance.yahoo.com"
    blockscout_url: str = "https://base.blockscout.com/api/v2"

    # Settlement
    risk_config_path: str = ""
    evaluation_concurrency: int = 10
    monitor_interval: float = 300.0  # 0 disables the background monitor
    cron_secret: str = ""

    # Webhooks
    webhook_timeout: float = 5.0
    dispatcher_workers: int = 4
    dispatcher_queue_size: int = 1000

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
