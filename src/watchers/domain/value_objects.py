"""
Watcher Value Objects
=====================

Pure calculations for the watcher lifecycle: billing dates, uptime over a
trailing window, SLA violation detection and refund eligibility.

Stateless utility classes - all date and percentage arithmetic in one place.
"""

import calendar
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Optional

from src.config import BillingCycle, ViolationType


class BillingCalculator:
    """Billing-date arithmetic."""

    @staticmethod
    def add_months(moment: datetime, months: int = 1) -> datetime:
        """
        Add calendar months, clamping the day to the target month's length.

        Jan 31 + 1 month is Feb 28 (Feb 29 in leap years).
        """
        month_index = moment.month - 1 + months
        year = moment.year + month_index // 12
        month = month_index % 12 + 1
        day = min(moment.day, calendar.monthrange(year, month)[1])
        return moment.replace(year=year, month=month, day=day)

    @classmethod
    def next_billing_date(cls, cycle: str, from_date: datetime) -> Optional[datetime]:
        """
        Next billing date one cycle after ``from_date``.

        Returns:
            None for one-time billing
        """
        if cycle == BillingCycle.WEEKLY:
            return from_date + timedelta(days=7)
        if cycle == BillingCycle.MONTHLY:
            return cls.add_months(from_date, 1)
        return None


class UptimeCalculator:
    """Uptime over a trailing window from recorded downtime periods."""

    @staticmethod
    def downtime_seconds(
        periods: Iterable[Any],
        now: datetime,
        window_hours: int = 24
    ) -> float:
        window_start = now - timedelta(hours=window_hours)
        total = 0.0
        for period in periods:
            start = max(period.start_time, window_start)
            end = min(period.end_time or now, now)
            if end > start:
                total += (end - start).total_seconds()
        return total

    @classmethod
    def uptime_percent(
        cls,
        periods: Iterable[Any],
        now: datetime,
        window_hours: int = 24
    ) -> float:
        """
        Percentage of the window not covered by downtime.

        Open periods run until ``now``. Result is clamped to [0, 100] and not
        rounded.
        """
        window_seconds = window_hours * 3600
        downtime = cls.downtime_seconds(periods, now, window_hours)
        uptime = 100.0 * (1 - downtime / window_seconds)
        return max(0.0, min(100.0, uptime))


@dataclass(frozen=True)
class ViolationFinding:
    """A detected SLA violation, before it is persisted."""
    violation_type: ViolationType
    threshold: float
    actual_value: float


class ViolationDetector:
    """
    SLA violation rules, evaluated in order; first match wins.

    1. consecutive failures >= threshold
    2. uptime below threshold
    """

    def __init__(self, consecutive_failures_threshold: int = 5, uptime_threshold: float = 99.0):
        self.consecutive_failures_threshold = consecutive_failures_threshold
        self.uptime_threshold = uptime_threshold

    def evaluate(self, consecutive_failures: int, uptime_percent: float) -> Optional[ViolationFinding]:
        if consecutive_failures >= self.consecutive_failures_threshold:
            return ViolationFinding(
                violation_type=ViolationType.CONSECUTIVE_FAILURES,
                threshold=self.consecutive_failures_threshold,
                actual_value=consecutive_failures,
            )
        if uptime_percent < self.uptime_threshold:
            return ViolationFinding(
                violation_type=ViolationType.UPTIME,
                threshold=self.uptime_threshold,
                actual_value=uptime_percent,
            )
        return None


@dataclass
class RefundEligibility:
    """Read-only refund decision with its reasoning."""
    eligible: bool
    reason: str
    details: Dict[str, Any] = field(default_factory=dict)
