from decimal import Decimal
from pathlib import Path
from typing import Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    log_level: str = Field(default="INFO", description="Logging level")
    log_json: Optional[bool] = Field(
        default=None,
        description="Render JSON lines (True) or console output (False); unset means JSON unless DEBUG",
    )

    # Pending transaction monitor
    monitor_interval_seconds: float = Field(
        default=15.0,
        description="Seconds between reconciliation sweeps over pending transactions",
    )
    drop_threshold_seconds: float = Field(
        default=3600.0,
        description="Age after which an unseen transaction is considered dropped from the mempool",
    )
    rpc_timeout_seconds: float = Field(
        default=10.0,
        description="Upper bound for a single chain RPC call made during reconciliation",
    )

    # Fee handling
    fee_bump_multiplier: Decimal = Field(
        default=Decimal("1.5"),
        description="Fee multiplier applied to cancel and speed-up replacements",
    )
    default_gas_limit: int = Field(default=21000, description="Gas limit for native transfers")
    token_transfer_gas_limit: int = Field(default=60000, description="Gas limit for token transfers")
    gas_tier_multipliers: Dict[str, Decimal] = Field(
        default_factory=lambda: {
            "slow": Decimal("0.9"),
            "average": Decimal("1.0"),
            "fast": Decimal("1.5"),
        },
        description="Fee multipliers per urgency tier",
    )
    gas_tier_eta_minutes: Dict[str, int] = Field(
        default_factory=lambda: {"slow": 10, "average": 5, "fast": 1},
        description="Expected inclusion time per urgency tier",
    )

    # Route computation
    provider_timeout_seconds: float = Field(
        default=10.0,
        description="Per-provider timeout for quote calls during route search",
    )
    route_intermediate_asset: str = Field(
        default="USDT",
        description="Asset used as the bridge hop for swap-bridge-swap routes",
    )
    route_cost_weight: Decimal = Field(default=Decimal("0.7"), description="Weight of USD cost in route scoring")
    route_time_weight: Decimal = Field(default=Decimal("0.3"), description="Weight of ETA minutes in route scoring")

    # Cross-chain tracking
    tracker_poll_interval_seconds: float = Field(
        default=15.0,
        description="Seconds between status polls of active cross-chain transactions",
    )

    # Provider endpoints
    relay_base_url: str = Field(default="", description="Override for the Relay API base URL")
    bungee_base_url: str = Field(default="", description="Override for the Bungee API base URL")
    bungee_api_key: str = Field(default="", description="Bungee API key")
    coingecko_api_key: str = Field(default="", description="Coingecko API key")
    enable_coingecko: bool = Field(default=True, description="Enable Coingecko price lookups")
    price_cache_ttl_seconds: int = Field(default=60, description="TTL for cached native asset prices")

    # Chain RPC endpoints keyed by chain name, e.g. {"ethereum": "https://..."}
    rpc_urls: Dict[str, str] = Field(default_factory=dict, description="JSON-RPC endpoint per chain")

    @field_validator(
        "monitor_interval_seconds",
        "drop_threshold_seconds",
        "rpc_timeout_seconds",
        "provider_timeout_seconds",
        "tracker_poll_interval_seconds",
    )
    @classmethod
    def _positive_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("route_cost_weight", "route_time_weight")
    @classmethod
    def _non_negative_weight(cls, value: Decimal) -> Decimal:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @field_validator("fee_bump_multiplier")
    @classmethod
    def _bump_raises_fee(cls, value: Decimal) -> Decimal:
        if value <= 1:
            raise ValueError("replacement fees must exceed the original")
        return value


settings = Settings()
