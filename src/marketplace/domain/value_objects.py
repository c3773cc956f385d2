"""
Marketplace Value Objects
=========================

Immutable value objects for the marketplace domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

import hashlib
import json
from decimal import Decimal
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from src.core.models import to_money


class FulfillmentFingerprint:
    """
    Deterministic digest of a creation request.

    Keys are sorted before hashing, so two configs that differ only in key
    order produce the same digest.
    """

    LENGTH = 32

    @staticmethod
    def canonical(type_id: str, config: Any, webhook: str, customer_id: str) -> str:
        return json.dumps(
            {
                "typeId": type_id,
                "config": config,
                "webhook": webhook,
                "customerId": customer_id,
            },
            sort_keys=True,
            separators=(",", ":"),
            default=str,
        )

    @classmethod
    def compute(cls, type_id: str, config: Any, webhook: str, customer_id: str) -> str:
        """
        Compute the fulfillment hash.

        Returns:
            First 32 hex chars of the SHA-256 of the canonical JSON
        """
        canonical = cls.canonical(type_id, config, webhook, customer_id)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:cls.LENGTH]


class RevenueSplit:
    """
    Operator/platform split of a payment amount.

    The platform share is the remainder, so both shares always add up to the
    amount exactly (negative amounts split the same way).
    """

    def __init__(self, operator_percent: Decimal = Decimal("0.80")):
        self.operator_percent = to_money(operator_percent)

    def split(self, amount: Any) -> Tuple[Decimal, Decimal]:
        amount = to_money(amount)
        operator_share = amount * self.operator_percent
        return operator_share, amount - operator_share


# ========== Policy ==========

class RetryPolicyLimits(BaseModel):
    """Bounds and defaults for webhook retry policies."""
    max_retries_limit: int = Field(default=5, ge=0)
    default_max_retries: int = Field(default=3, ge=0)
    default_backoff_ms: int = Field(default=1000, ge=0)


class FreeTierPolicy(BaseModel):
    """Free tier limits."""
    max_watchers: int = Field(default=1, ge=0)
    min_polling_interval: int = Field(default=30, ge=1)
    upgrade_prompt: str = Field(
        default=(
            "Free tier limited to 1 watcher. Upgrade to paid tier for "
            "unlimited watchers and faster polling."
        )
    )


class SLAPolicy(BaseModel):
    """SLA thresholds and refund terms."""
    uptime_threshold: float = Field(default=99.0, ge=0, le=100)
    consecutive_failures_threshold: int = Field(default=5, ge=1)
    uptime_window_hours: int = Field(default=24, ge=1)
    refund_percent: Decimal = Field(default=Decimal("0.50"), ge=0, le=1)
    refund_lookback_days: int = Field(default=7, ge=1)


class MarketplacePolicy(BaseModel):
    """
    Marketplace policy loaded from YAML.

    Every field has a default, so a missing file yields the standard policy.
    """
    polling_intervals: List[int] = Field(default_factory=lambda: [5, 15, 30, 60])
    default_polling_interval: int = Field(default=5)
    ttl_options: List[int] = Field(
        default_factory=lambda: [24, 72, 168],
        description="Allowed TTLs in hours (null always allowed = no expiry)"
    )
    retry: RetryPolicyLimits = Field(default_factory=RetryPolicyLimits)
    free_tier: FreeTierPolicy = Field(default_factory=FreeTierPolicy)
    operator_share: Decimal = Field(default=Decimal("0.80"), ge=0, le=1)
    sla: SLAPolicy = Field(default_factory=SLAPolicy)
    refund_window_minutes: int = Field(default=60, ge=0)
    batch_max_items: int = Field(default=50, ge=1)
    batch_pause_ms: int = Field(default=100, ge=0)
    upgrade_price: Decimal = Field(default=Decimal("1.00"), ge=0)
    min_type_price: Decimal = Field(default=Decimal("0.001"), ge=0)

    @field_validator("polling_intervals", "ttl_options")
    @classmethod
    def validate_options(cls, v: List[int]) -> List[int]:
        """Options must be positive and are kept sorted."""
        if not v or any(option <= 0 for option in v):
            raise ValueError("options must be a non-empty list of positive integers")
        return sorted(set(v))

    @property
    def revenue_split(self) -> RevenueSplit:
        return RevenueSplit(self.operator_share)

    @property
    def platform_fee(self) -> Decimal:
        return Decimal(1) - self.operator_share

    def ttl_allowed(self, ttl: Optional[int]) -> bool:
        return ttl is None or ttl in self.ttl_options
