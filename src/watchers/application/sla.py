"""
SLA / Refund Engine
===================

Tracks downtime from check outcomes, derives uptime over a trailing window,
detects SLA violations after failed checks and credits automatic refunds.

Violation rules (first match wins):
1. consecutive failures >= threshold (default 5)
2. uptime below threshold (default 99.0%)

There is no cooldown: every failed check that still matches a rule records a
new violation and a new refund.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from src.config import PaymentType, settings
from src.core.exceptions import ResourceNotFoundException
from src.core.models import utc_now
from src.marketplace.domain import MarketplacePolicy, Payment
from src.marketplace.infrastructure.repositories import PaymentRepository
from src.shared.infrastructure.logging import get_logger
from src.watchers.domain import (
    SLAViolation,
    UptimeCalculator,
    ViolationDetector,
    Watcher,
)
from src.watchers.infrastructure.repositories import SLAViolationRepository, WatcherRepository

logger = get_logger(__name__)


class SLAService:
    """SLA tracking, violation detection and refunds."""

    def __init__(
        self,
        watchers: WatcherRepository,
        violations: SLAViolationRepository,
        payments: PaymentRepository,
        policy: Callable[[], MarketplacePolicy],
        clock: Callable[[], datetime] = utc_now,
    ):
        self._watchers = watchers
        self._violations = violations
        self._payments = payments
        self._policy = policy
        self._clock = clock

    def _detector(self) -> ViolationDetector:
        sla = self._policy().sla
        return ViolationDetector(
            consecutive_failures_threshold=sla.consecutive_failures_threshold,
            uptime_threshold=sla.uptime_threshold,
        )

    def current_uptime(self, watcher: Watcher, now: datetime) -> float:
        return UptimeCalculator.uptime_percent(
            watcher.sla.downtime_periods,
            now,
            self._policy().sla.uptime_window_hours,
        )

    def apply_check_outcome(
        self,
        watcher: Watcher,
        success: bool,
        now: datetime,
        error: Optional[str] = None,
    ) -> None:
        """
        Update downtime periods and stored uptime in place.

        Called inside the same atomic watcher update that records the check.
        """
        if success:
            watcher.end_downtime(now)
        else:
            watcher.start_downtime(now, f"Check failed: {error or 'unknown error'}")
        watcher.sla.uptime_percent = self.current_uptime(watcher, now)

    async def evaluate_violation(
        self,
        watcher_id: str,
        now: Optional[datetime] = None
    ) -> Optional[SLAViolation]:
        """
        Record a violation (and refund) if the watcher currently breaches.

        Returns:
            The persisted violation, or None when no rule matches
        """
        now = now or self._clock()
        watcher = await self._watchers.get(watcher_id)
        if watcher is None:
            raise ResourceNotFoundException("Watcher", watcher_id)

        uptime = self.current_uptime(watcher, now)
        finding = self._detector().evaluate(watcher.consecutive_failures, uptime)
        if finding is None:
            return None

        open_period = watcher.open_downtime()
        start_time = open_period.start_time if open_period else now

        violation = await self._violations.add(SLAViolation(
            watcher_id=watcher.id,
            operator_id=watcher.operator_id,
            customer_id=watcher.customer_id,
            violation_type=finding.violation_type,
            threshold=finding.threshold,
            actual_value=finding.actual_value,
            start_time=start_time,
            end_time=now,
            duration_minutes=(now - start_time).total_seconds() / 60,
            auto_refund=True,
            created_at=now,
        ))

        refund = await self._issue_refund(watcher, violation, now)
        if refund is not None:
            violation = await self._violations.update(
                violation.id,
                refund_amount=-refund.amount,
                refund_id=refund.id,
            )

        await self._watchers.modify(watcher.id, lambda w: w.record_violation(now))

        logger.warning(
            "SLA violation recorded",
            extra={
                "watcher_id": watcher.id,
                "violation_id": violation.id,
                "violation_type": finding.violation_type.value,
                "actual_value": finding.actual_value,
                "refund_amount": str(violation.refund_amount) if violation.refund_amount else None,
            }
        )
        return violation

    async def refundable_amount(self, watcher_id: str, now: datetime) -> Decimal:
        """
        Share of the watcher's trailing payments to credit back.

        The sum is signed, so earlier refund credits reduce later refunds.
        """
        sla = self._policy().sla
        since = now - timedelta(days=sla.refund_lookback_days)
        payments = await self._payments.list_since(watcher_id, since)
        total = sum((p.amount for p in payments), Decimal("0"))
        return total * sla.refund_percent

    async def _issue_refund(
        self,
        watcher: Watcher,
        violation: SLAViolation,
        now: datetime
    ) -> Optional[Payment]:
        refund = await self.refundable_amount(watcher.id, now)
        if refund <= 0:
            return None

        operator_share, platform_share = self._policy().revenue_split.split(-refund)
        return await self._payments.add(Payment(
            watcher_id=watcher.id,
            operator_id=watcher.operator_id,
            customer_id=watcher.customer_id,
            type=PaymentType.REFUND,
            amount=-refund,
            operator_share=operator_share,
            platform_share=platform_share,
            network=settings.payment_network,
            sla_violation_id=violation.id,
            created_at=now,
        ))

    async def acknowledge(self, violation_id: str, resolution: Optional[str] = None) -> SLAViolation:
        now = self._clock()
        violation = await self._violations.modify(
            violation_id,
            lambda v: v.acknowledge(now, resolution)
        )
        if violation is None:
            raise ResourceNotFoundException("SLAViolation", violation_id)
        return violation

    async def list_violations(
        self,
        watcher_id: Optional[str] = None,
        operator_id: Optional[str] = None,
        customer_id: Optional[str] = None,
        violation_type: Optional[str] = None,
    ) -> List[SLAViolation]:
        violations = await self._violations.list(
            watcher_id=watcher_id,
            operator_id=operator_id,
            customer_id=customer_id,
            violation_type=violation_type,
        )
        return sorted(violations, key=lambda v: v.created_at, reverse=True)

    async def sla_status(self, watcher_id: str) -> Dict[str, Any]:
        """SLA snapshot of one watcher with uptime recomputed now."""
        watcher = await self._watchers.get(watcher_id)
        if watcher is None:
            raise ResourceNotFoundException("Watcher", watcher_id)

        now = self._clock()
        sla_policy = self._policy().sla
        violations = await self.list_violations(watcher_id=watcher_id)

        return {
            "watcherId": watcher.id,
            "status": watcher.status,
            "sla": {
                "uptimePercent": self.current_uptime(watcher, now),
                "violationCount": watcher.sla.violation_count,
                "lastViolation": (
                    watcher.sla.last_violation.isoformat() if watcher.sla.last_violation else None
                ),
                "consecutiveFailures": watcher.consecutive_failures,
                "lastCheckSuccess": watcher.last_check_success,
                "downtimePeriods": [p.to_document() for p in watcher.sla.downtime_periods],
            },
            "thresholds": {
                "uptimePercent": sla_policy.uptime_threshold,
                "consecutiveFailures": sla_policy.consecutive_failures_threshold,
                "windowHours": sla_policy.uptime_window_hours,
                "refundPercent": float(sla_policy.refund_percent) * 100,
            },
            "violations": [v.to_document() for v in violations],
        }
