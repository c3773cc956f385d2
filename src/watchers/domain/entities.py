"""
Watcher Domain Entities
=======================

The watcher state machine and the records it owns.

Status moves toward the terminal states (expired, cancelled); suspended is
left only by operator or billing action. While active, a watcher either has
a next billing date or bills one-time, never both.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import Field

from src.config import (
    BillingCycle,
    BillingRecordStatus,
    CustomerTier,
    TERMINAL_WATCHER_STATUSES,
    ViolationType,
    WatcherStatus,
)
from src.core.models import DomainModel, generate_id, utc_now
from src.watchers.domain.value_objects import RefundEligibility


class RetryPolicy(DomainModel):
    """Webhook retry budget: ``max_retries + 1`` attempts in total."""
    max_retries: int = 3
    backoff_ms: float = 1000

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


class DowntimePeriod(DomainModel):
    """A stretch of failed checks; ``end_time`` is None while ongoing."""
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_minutes: Optional[float] = None
    reason: str = ""
    resolved: bool = False

    @property
    def is_open(self) -> bool:
        return self.end_time is None


class WatcherSLA(DomainModel):
    uptime_percent: float = 100.0
    violation_count: int = 0
    last_violation: Optional[datetime] = None
    downtime_periods: List[DowntimePeriod] = Field(default_factory=list)


class BillingRecord(DomainModel):
    """One recurring billing attempt."""
    id: str = Field(default_factory=generate_id)
    billing_date: datetime
    processed_at: datetime
    amount: Decimal
    status: BillingRecordStatus
    payment_id: Optional[str] = None
    failure_reason: Optional[str] = None


class Watcher(DomainModel):
    """
    A customer's instance of a watcher type.

    Check bookkeeping, SLA tracking and billing history all live on the
    watcher document.
    """

    id: str = Field(default_factory=generate_id)
    type_id: str
    operator_id: str
    customer_id: str
    config: Any = None
    webhook: str
    status: WatcherStatus = WatcherStatus.ACTIVE
    created_at: datetime = Field(default_factory=utc_now)
    expires_at: Optional[datetime] = None
    last_checked: Optional[datetime] = None
    last_triggered: Optional[datetime] = None
    trigger_count: int = 0
    billing_cycle: BillingCycle = BillingCycle.ONE_TIME
    next_billing_at: Optional[datetime] = None
    billing_history: List[BillingRecord] = Field(default_factory=list)
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    polling_interval: int = 5
    ttl: Optional[int] = None
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    tier: CustomerTier = CustomerTier.FREE
    sla: WatcherSLA = Field(default_factory=WatcherSLA)
    last_check_success: Optional[bool] = None
    last_check_result: Any = None
    consecutive_failures: int = 0

    # ========== Queries ==========

    @property
    def is_active(self) -> bool:
        return self.status == WatcherStatus.ACTIVE

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_WATCHER_STATUSES

    @property
    def is_recurring(self) -> bool:
        return self.billing_cycle != BillingCycle.ONE_TIME

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def is_due_for_check(self, now: datetime) -> bool:
        """First check always runs; afterwards wait ``polling_interval`` minutes."""
        if self.last_checked is None:
            return True
        return now - self.last_checked >= timedelta(minutes=self.polling_interval)

    def is_billing_due(self, now: datetime) -> bool:
        return (
            self.is_active
            and self.is_recurring
            and self.next_billing_at is not None
            and self.next_billing_at <= now
        )

    def open_downtime(self) -> Optional[DowntimePeriod]:
        for period in reversed(self.sla.downtime_periods):
            if period.is_open:
                return period
        return None

    def refund_eligibility(self, now: datetime, window_minutes: int = 60) -> RefundEligibility:
        """
        Full refund iff cancelled within ``window_minutes`` of creation with
        no webhook ever delivered.
        """
        hours_since_creation = (now - self.created_at).total_seconds() / 3600
        minutes_to_cancel = None
        if self.cancelled_at is not None:
            minutes_to_cancel = (self.cancelled_at - self.created_at).total_seconds() / 60

        is_cancelled = self.status == WatcherStatus.CANCELLED
        within_window = minutes_to_cancel is not None and minutes_to_cancel <= window_minutes
        is_unused = self.trigger_count == 0
        eligible = is_cancelled and within_window and is_unused

        if not is_cancelled:
            reason = "Watcher is not cancelled"
        elif not within_window:
            reason = f"Cancelled after {window_minutes}-minute grace period"
        elif not is_unused:
            reason = "Webhooks were triggered (usage detected)"
        else:
            reason = f"Eligible: cancelled within {window_minutes} minutes with no usage"

        return RefundEligibility(
            eligible=eligible,
            reason=reason,
            details={
                "createdAt": self.created_at.isoformat(),
                "cancelledAt": self.cancelled_at.isoformat() if self.cancelled_at else None,
                "hoursSinceCreation": round(hours_since_creation, 2),
                "minutesToCancellation": (
                    round(minutes_to_cancel, 2) if minutes_to_cancel is not None else None
                ),
                "triggerCount": self.trigger_count,
                "isWithinGracePeriod": within_window,
                "isUnused": is_unused,
            },
        )

    # ========== Transitions ==========

    # expire/suspend never leave a terminal status; they report whether
    # the transition happened.

    def expire(self) -> bool:
        if self.is_terminal:
            return False
        self.status = WatcherStatus.EXPIRED
        return True

    def cancel(self, now: datetime, reason: Optional[str] = None) -> None:
        self.status = WatcherStatus.CANCELLED
        self.cancelled_at = now
        self.cancellation_reason = reason
        self.next_billing_at = None

    def suspend(self) -> bool:
        if self.is_terminal:
            return False
        self.status = WatcherStatus.SUSPENDED
        return True

    def record_check_success(self, now: datetime, data: Any) -> None:
        self.last_checked = now
        self.last_check_result = data
        self.last_check_success = True
        self.consecutive_failures = 0

    def record_check_failure(self, now: datetime, error: str) -> None:
        self.last_checked = now
        self.last_check_result = {"error": error}
        self.last_check_success = False
        self.consecutive_failures += 1

    def record_trigger(self, now: datetime) -> None:
        self.trigger_count += 1
        self.last_triggered = now

    def start_downtime(self, now: datetime, reason: str) -> None:
        """Open a downtime period unless one is already open."""
        if self.open_downtime() is None:
            self.sla.downtime_periods.append(
                DowntimePeriod(start_time=now, reason=reason)
            )

    def end_downtime(self, now: datetime) -> None:
        period = self.open_downtime()
        if period is not None:
            period.end_time = now
            period.duration_minutes = (now - period.start_time).total_seconds() / 60
            period.resolved = True

    def record_billing(self, record: BillingRecord) -> None:
        self.billing_history.append(record)

    def record_violation(self, now: datetime) -> None:
        self.sla.violation_count += 1
        self.sla.last_violation = now


class SLAViolation(DomainModel):
    """
    Persisted SLA breach.

    Immutable except for acknowledgement and the refund backfill.
    """

    id: str = Field(default_factory=lambda: generate_id("sla_"))
    watcher_id: str
    operator_id: str
    customer_id: str
    violation_type: ViolationType
    threshold: float
    actual_value: float
    start_time: datetime
    end_time: datetime
    duration_minutes: float
    auto_refund: bool = True
    refund_amount: Optional[Decimal] = None
    refund_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    acknowledged: bool = False
    acknowledged_at: Optional[datetime] = None
    resolution: Optional[str] = None

    def acknowledge(self, now: datetime, resolution: Optional[str] = None) -> None:
        self.acknowledged = True
        self.acknowledged_at = now
        self.resolution = resolution
