"""
Pydantic Settings Configuration
================================

All bot configuration is loaded from environment variables.
Copy .env.example to .env and fill in your values.
"""

from typing import Annotated, List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode


class Settings(BaseSettings):
    """Main configuration settings loaded from environment."""

    # ==========================================
    # MODE
    # ==========================================
    dry_run: bool = Field(
        default=True,
        description="Paper trading mode - no real orders or transactions"
    )

    # ==========================================
    # WALLET & AUTH
    # ==========================================
    polymarket_private_key: str = Field(
        default="",
        description="Ethereum private key for signing (required for live trading)"
    )
    funder_address: str = Field(
        default="",
        description="Wallet holding funds; defaults to the signer address"
    )
    signature_type: int = Field(
        default=0,
        description="CLOB signature type (0 = EOA)"
    )
    polygon_rpc_url: str = Field(
        default="https://polygon-rpc.com",
        description="Polygon RPC endpoint"
    )

    # ==========================================
    # POLYMARKET API
    # ==========================================
    polymarket_host: str = Field(
        default="https://clob.polymarket.com",
        description="Polymarket CLOB API host"
    )
    polymarket_ws: str = Field(
        default="wss://ws-subscriptions-clob.polymarket.com/ws/market",
        description="Polymarket market WebSocket endpoint"
    )
    gamma_api: str = Field(
        default="https://gamma-api.polymarket.com",
        description="Polymarket Gamma API for market metadata"
    )
    data_api: str = Field(
        default="https://data-api.polymarket.com",
        description="Polymarket Data API for positions"
    )
    market_slug_prefix: str = Field(
        default="btc-updown-5m",
        description="Slug prefix; the epoch timestamp is appended"
    )

    # ==========================================
    # TRIGGER
    # ==========================================
    trade_size_usd: float = Field(
        default=1.0,
        description="USD notional per order (floored at $1)"
    )
    target_prices: Annotated[List[float], NoDecode] = Field(
        default=[0.07],
        description="Comma-separated ask prices to snipe, in priority order"
    )
    entry_seconds_before_expiry: int = Field(
        default=60,
        description="Firing allowed once this many seconds remain"
    )
    min_seconds_before_expiry: int = Field(
        default=5,
        description="No firing with fewer seconds than this remaining"
    )
    poll_interval_seconds: float = Field(
        default=2.0,
        description="Status poll interval inside the entry window"
    )
    reconnect_delay_seconds: float = Field(
        default=2.0,
        description="Fixed WebSocket reconnect backoff"
    )

    # ==========================================
    # FEES & GAS
    # ==========================================
    order_fee_rate_bps: int = Field(
        default=1000,
        description="Fee rate passed with each signed order"
    )
    gas_tip_gwei: int = Field(
        default=30,
        description="Priority fee; Polygon needs ~25 gwei minimum"
    )
    gas_max_fee_gwei: Optional[int] = Field(
        default=None,
        description="Explicit max fee override"
    )
    fallback_max_fee_gwei: int = Field(
        default=150,
        description="Floor for the computed max fee"
    )

    # ==========================================
    # LOGGING
    # ==========================================
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )
    log_json: bool = Field(
        default=False,
        description="Emit JSON log lines"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False

    @field_validator("target_prices", mode="before")
    @classmethod
    def _split_target_prices(cls, value):
        if isinstance(value, str):
            return [p.strip() for p in value.split(",") if p.strip()]
        return value

    @field_validator("target_prices")
    @classmethod
    def _check_target_prices(cls, value: List[float]) -> List[float]:
        if not value:
            raise ValueError("TARGET_PRICES must name at least one price")
        for price in value:
            if not 0 < price < 1:
                raise ValueError(f"target price {price} must be between 0 and 1")
        return value

    @field_validator("trade_size_usd")
    @classmethod
    def _check_trade_size(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("TRADE_SIZE_USD must be greater than 0")
        return value

    @field_validator("gas_max_fee_gwei", mode="before")
    @classmethod
    def _blank_is_unset(cls, value):
        if value == "" or value == 0 or value == "0":
            return None
        return value

    @model_validator(mode="after")
    def _check_windows_and_key(self) -> "Settings":
        if self.min_seconds_before_expiry < 0:
            raise ValueError("MIN_SECONDS_BEFORE_EXPIRY cannot be negative")
        if self.entry_seconds_before_expiry < self.min_seconds_before_expiry:
            raise ValueError(
                "ENTRY_SECONDS_BEFORE_EXPIRY must be >= MIN_SECONDS_BEFORE_EXPIRY"
            )
        if not self.dry_run and not self.polymarket_private_key:
            raise ValueError("POLYMARKET_PRIVATE_KEY is required when DRY_RUN=false")
        return self


def load_settings(**overrides) -> Settings:
    """
    Build settings from the environment and .env.

    Raises pydantic.ValidationError on invalid configuration.
    """
    return Settings(**overrides)
