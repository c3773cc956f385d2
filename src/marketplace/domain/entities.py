"""
Marketplace Domain Entities
===========================

Operators, the watcher types they sell, the customers who buy them, and the
immutable money trail (payments and receipts).
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import Field

from src.config import (
    CustomerTier,
    OperatorStatus,
    PaymentType,
    WatcherCategory,
    WatcherTypeStatus,
)
from src.core.models import DomainModel, generate_id, utc_now


class OperatorStats(DomainModel):
    watchers_created: int = 0
    total_triggers: int = 0
    total_earned: Decimal = Decimal("0")
    uptime_percent: float = 100.0


class Operator(DomainModel):
    """
    Service provider that defines watcher types and earns the operator share.

    Created via registration; mutated only through stat increments.
    """

    id: str = Field(default_factory=generate_id)
    name: str
    wallet: str
    description: str = ""
    website: Optional[str] = None
    status: OperatorStatus = OperatorStatus.ACTIVE
    created_at: datetime = Field(default_factory=utc_now)
    stats: OperatorStats = Field(default_factory=OperatorStats)


class WatcherTypeStats(DomainModel):
    instances: int = 0
    triggers: int = 0


class WatcherType(DomainModel):
    """A monitoring product offered by an operator."""

    id: str = Field(default_factory=generate_id)
    operator_id: str
    name: str
    category: WatcherCategory
    description: str = ""
    price: Decimal
    config_schema: Optional[Any] = None
    executor_id: Optional[str] = None
    status: WatcherTypeStatus = WatcherTypeStatus.ACTIVE
    created_at: datetime = Field(default_factory=utc_now)
    stats: WatcherTypeStats = Field(default_factory=WatcherTypeStats)


class CustomerStats(DomainModel):
    total_watchers_created: int = 0
    total_spent: Decimal = Decimal("0")


class Customer(DomainModel):
    """
    Payer who instantiates watchers.

    Created lazily on the first creation or upgrade request.
    """

    id: str
    tier: CustomerTier = CustomerTier.FREE
    free_watchers_used: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    upgraded_at: Optional[datetime] = None
    stats: CustomerStats = Field(default_factory=CustomerStats)

    @property
    def is_free(self) -> bool:
        return self.tier == CustomerTier.FREE

    def has_free_capacity(self, max_watchers: int) -> bool:
        return self.free_watchers_used < max_watchers

    def upgrade(self, now: datetime) -> None:
        self.tier = CustomerTier.PAID
        self.upgraded_at = now


class Payment(DomainModel):
    """
    Immutable money movement.

    Negative amounts are refunds/credits. Upgrade payments carry no watcher
    or operator.
    """

    id: str = Field(default_factory=generate_id)
    watcher_id: Optional[str] = None
    operator_id: Optional[str] = None
    customer_id: str
    type: PaymentType = PaymentType.CREATION
    amount: Decimal
    operator_share: Decimal
    platform_share: Decimal
    network: str
    tx_hash: Optional[str] = None
    sla_violation_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)


class Receipt(DomainModel):
    """Idempotency witness for one fulfilled creation request."""

    id: str = Field(default_factory=lambda: generate_id("rcpt_"))
    watcher_id: str
    type_id: str
    amount: Decimal
    chain: str
    rail: str
    timestamp: datetime = Field(default_factory=utc_now)
    fulfillment_hash: str
    customer_id: str
    operator_id: str
    payment_id: str
