"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="sentinel-marketplace", description="Application name")
    app_version: str = Field(default="2.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/sentinel.db",
        description="Document store connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Marketplace Policy ==========
    marketplace_config_path: Path = Field(
        default=Path("marketplace_config.yaml"),
        description="Path to marketplace policy YAML file"
    )
    auto_seed: bool = Field(
        default=True,
        description="Register the platform operator and built-in watcher types on an empty store"
    )
    platform_wallet: str = Field(
        default="0x1468b3fa064b44ba184ab34fd9cd9eb34e43f197",
        description="Platform payout address (receives the platform share)"
    )

    # ========== Payments ==========
    payment_network: str = Field(default="eip155:8453", description="Settlement network identifier")
    payment_rail: str = Field(default="x402", description="Payment rail name recorded on receipts")
    billing_success_rate: float = Field(
        default=0.9,
        description="Success probability of the simulated recurring-billing rail",
        ge=0.0,
        le=1.0
    )

    # ========== Scheduling ==========
    check_interval_seconds: int = Field(
        default=0,
        description="In-process check trigger interval (0 = external cron only)",
        ge=0
    )
    billing_interval_seconds: int = Field(
        default=0,
        description="In-process billing trigger interval (0 = external cron only)",
        ge=0
    )
    cron_secret: Optional[str] = Field(
        default=None,
        description="Shared secret required in X-Cron-Secret for /cron endpoints"
    )

    # ========== Executors & Webhooks ==========
    executor_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for a single executor check",
        gt=0
    )
    webhook_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for a single webhook delivery attempt",
        gt=0,
        le=60
    )
    rpc_urls: Dict[str, str] = Field(
        default={
            "base": "https://mainnet.base.org",
            "ethereum": "https://eth.llamarpc.com",
            "optimism": "https://mainnet.optimism.io",
            "arbitrum": "https://arb1.arbitrum.io/rpc",
        },
        description="JSON-RPC endpoints used by the wallet-balance executor"
    )
    coingecko_base_url: str = Field(
        default="https://api.coingecko.com/api/v3",
        description="CoinGecko API base URL used by the token-price executor"
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    # ========== Grafana OTLP Metrics ==========
    grafana_host: Optional[str] = Field(
        default=None,
        description="Grafana OTLP gateway URL (e.g., https://otlp-gateway-prod-ap-south-1.grafana.net)"
    )
    grafana_api_key: Optional[str] = Field(
        default=None,
        description="Grafana API key for OTLP authentication"
    )
    grafana_instance_id: Optional[str] = Field(
        default=None,
        description="Grafana instance ID for OTLP authentication"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "testing", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class OperatorStatus(str, Enum):
    """Operator account statuses."""
    ACTIVE = "active"
    SUSPENDED = "suspended"
    PENDING = "pending"


class WatcherCategory(str, Enum):
    """Watcher type categories."""
    WALLET = "wallet"       # balances, transfers
    PRICE = "price"         # token prices, DEX rates
    CONTRACT = "contract"   # smart contract events
    SOCIAL = "social"       # mentions, follows
    DEFI = "defi"           # yields, liquidations
    CUSTOM = "custom"       # catch-all


class WatcherTypeStatus(str, Enum):
    """Watcher type statuses."""
    ACTIVE = "active"
    DEPRECATED = "deprecated"


class WatcherStatus(str, Enum):
    """Watcher lifecycle statuses."""
    ACTIVE = "active"
    PAUSED = "paused"
    EXPIRED = "expired"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


class CustomerTier(str, Enum):
    """Customer tier levels."""
    FREE = "free"
    PAID = "paid"


class BillingCycle(str, Enum):
    """Billing recurrence."""
    ONE_TIME = "one-time"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class BillingRecordStatus(str, Enum):
    """Outcome of a single billing attempt."""
    SUCCESS = "success"
    FAILED = "failed"


class PaymentType(str, Enum):
    """Reason a payment record exists."""
    CREATION = "creation"
    RECURRING = "recurring"
    REFUND = "refund"
    UPGRADE = "upgrade"


class ViolationType(str, Enum):
    """SLA violation kinds."""
    UPTIME = "uptime"
    CONSECUTIVE_FAILURES = "consecutive_failures"


# ========== Lists for validation ==========

WATCHER_CATEGORIES = [c.value for c in WatcherCategory]
BILLING_CYCLES = [c.value for c in BillingCycle]
TERMINAL_WATCHER_STATUSES = [WatcherStatus.EXPIRED, WatcherStatus.CANCELLED]
