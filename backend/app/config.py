"""Application configuration."""

from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    database_url: str = "postgresql://localhost/paper_bot"
    storage_backend: Literal["postgres", "memory"] = "postgres"

    # Binance market data (public endpoints, no keys needed)
    binance_rest_url: str = "https://api.binance.com"
    binance_ws_url: str = "wss://stream.binance.com:9443/ws"

    # Paper ledger
    starting_balance: float = 10000.0

    # Monitors
    default_interval: str = "5m"
    history_limit: int = 200   # candles fetched on start
    min_history: int = 50      # refetch when fewer closed candles are buffered
    feed_timeout: float = 10.0
    feed_retry_attempts: int = 3
    feed_retry_delay: float = 1.0
    # Auto-start list, entries "SYMBOL:interval[:account]"
    monitors: list[str] = []

    # Maintenance
    signal_retention_days: int = 30
    monitor_retention_days: int = 7
    cleanup_interval_hours: float = 24.0

    # Bot configuration file (weights, thresholds, periods, sizing)
    trading_config_path: str = ""

    # Logging
    log_level: str = "INFO"
    debug: bool = False

    @field_validator("starting_balance")
    @classmethod
    def _positive_balance(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("starting_balance must be positive")
        return v

    def monitor_specs(self) -> list[tuple[str, str, str]]:
        """Parse `monitors` into (SYMBOL, interval, account_id) tuples."""
        specs = []
        for entry in self.monitors:
            parts = [p.strip() for p in entry.split(":") if p.strip()]
            if not parts:
                continue
            symbol = parts[0].upper()
            interval = parts[1] if len(parts) > 1 else self.default_interval
            account_id = parts[2] if len(parts) > 2 else "default"
            specs.append((symbol, interval, account_id))
        return specs


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
