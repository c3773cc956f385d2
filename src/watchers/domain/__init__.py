"""
Watchers Domain Layer
=====================

Contains:
- Entities: Watcher, BillingRecord, DowntimePeriod, SLAViolation
- Value Objects: BillingCalculator, UptimeCalculator, ViolationDetector

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from src.watchers.domain.entities import (
    BillingRecord,
    DowntimePeriod,
    RetryPolicy,
    SLAViolation,
    Watcher,
    WatcherSLA,
)
from src.watchers.domain.value_objects import (
    BillingCalculator,
    RefundEligibility,
    UptimeCalculator,
    ViolationDetector,
    ViolationFinding,
)

__all__ = [
    # Entities
    "BillingRecord",
    "DowntimePeriod",
    "RetryPolicy",
    "SLAViolation",
    "Watcher",
    "WatcherSLA",
    # Value Objects
    "BillingCalculator",
    "RefundEligibility",
    "UptimeCalculator",
    "ViolationDetector",
    "ViolationFinding",
]
