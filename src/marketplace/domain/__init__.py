"""
Marketplace Domain Layer
========================

Contains:
- Entities: Operator, WatcherType, Customer, Payment, Receipt
- Value Objects: FulfillmentFingerprint, RevenueSplit, MarketplacePolicy

No infrastructure dependencies.
"""

from src.marketplace.domain.entities import (
    Customer,
    CustomerStats,
    Operator,
    OperatorStats,
    Payment,
    Receipt,
    WatcherType,
    WatcherTypeStats,
)
from src.marketplace.domain.value_objects import (
    FreeTierPolicy,
    FulfillmentFingerprint,
    MarketplacePolicy,
    RetryPolicyLimits,
    RevenueSplit,
    SLAPolicy,
)

__all__ = [
    # Entities
    "Customer",
    "CustomerStats",
    "Operator",
    "OperatorStats",
    "Payment",
    "Receipt",
    "WatcherType",
    "WatcherTypeStats",
    # Value Objects
    "FreeTierPolicy",
    "FulfillmentFingerprint",
    "MarketplacePolicy",
    "RetryPolicyLimits",
    "RevenueSplit",
    "SLAPolicy",
]
