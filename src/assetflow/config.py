"""Application configuration using pydantic-settings.

Covers the wallet backend connection, request timeouts, and the cache
lifetimes used by the swap, withdrawal and transfer flows.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Backend API
    # ======================
    api_base_url: str = Field(
        default="https://zeusodx-web.onrender.com",
        description="Wallet backend base URL",
    )
    api_token: Optional[str] = Field(
        default=None, description="Bearer token for the wallet backend"
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug logging")

    # ======================
    # Timeouts & retries
    # ======================
    request_timeout_seconds: float = Field(
        default=30.0, description="Timeout for read-only calls (quotes, balances, status)"
    )
    commit_timeout_seconds: float = Field(
        default=60.0, description="Timeout for state-changing calls"
    )
    commit_max_attempts: int = Field(
        default=1, ge=1, description="Attempts per commit on retryable failures (same key)"
    )
    retry_backoff_seconds: float = Field(
        default=0.5, ge=0, description="Base delay between commit attempts"
    )

    # ======================
    # Balance cache
    # ======================
    balance_cache_ttl_seconds: float = Field(
        default=120.0, description="Balance cache lifetime for transfer flows (2 minutes)"
    )
    portfolio_cache_ttl_seconds: float = Field(
        default=1800.0, description="Balance cache lifetime for portfolio views (30 minutes)"
    )
    offline_max_age_seconds: float = Field(
        default=86400.0, description="Max age of the on-disk balance mirror (24 hours)"
    )
    balance_mirror_path: Optional[str] = Field(
        default="./data/balance_cache.json",
        description="On-disk mirror of last-known balances (empty = disabled)",
    )

    # ======================
    # Quotes & assets
    # ======================
    quote_fallback_ttl_seconds: float = Field(
        default=30.0, description="Quote lifetime when the server omits an expiry"
    )
    settlement_asset: str = Field(default="NGNZ", description="Fiat settlement asset")
    supported_swap_assets: str = Field(
        default="BTC,ETH,SOL,USDT,USDC,AVAX,BNB,MATIC",
        description="Comma-separated crypto assets accepted by the swap flows",
    )
    balance_assets: str = Field(
        default="SOL,BTC,USDT,USDC,ETH,BNB,MATIC,TRX,NGNZ",
        description="Comma-separated assets read from the balance endpoint",
    )
    transfer_currencies: str = Field(
        default="BTC,ETH,SOL,USDT,USDC,BNB,DOGE,MATIC,AVAX,NGNZ",
        description="Comma-separated currencies accepted for username transfers",
    )
    transfer_tracking_hours: float = Field(
        default=24.0, description="How long submitted transfers stay tracked locally"
    )

    @property
    def swap_assets(self) -> list[str]:
        """Parse supported swap assets into a list."""
        return _split_assets(self.supported_swap_assets)

    @property
    def balance_asset_list(self) -> list[str]:
        """Parse balance assets into a list."""
        return _split_assets(self.balance_assets)

    @property
    def transfer_currency_list(self) -> list[str]:
        """Parse transfer currencies into a list."""
        return _split_assets(self.transfer_currencies)

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "api_base_url": self.api_base_url,
            "api_token": "***" if self.api_token else "(not set)",
            "timeouts": {
                "request": self.request_timeout_seconds,
                "commit": self.commit_timeout_seconds,
            },
            "commit_max_attempts": self.commit_max_attempts,
            "balance_cache": {
                "ttl": self.balance_cache_ttl_seconds,
                "portfolio_ttl": self.portfolio_cache_ttl_seconds,
                "offline_max_age": self.offline_max_age_seconds,
                "mirror": self.balance_mirror_path or "(disabled)",
            },
            "settlement_asset": self.settlement_asset,
            "swap_assets": self.swap_assets,
        }


def _split_assets(value: str) -> list[str]:
    return [a.strip().upper() for a in value.split(",") if a.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
