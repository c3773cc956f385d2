"""
Billing Engine
==============

Recurring charges for weekly/monthly watchers.

A due watcher is charged through the payment rail. Success records a
recurring payment and advances ``next_billing_at`` one cycle from the due
date (not from the processing time). A decline or a system error records a
failed billing record and suspends the watcher.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from src.config import BillingRecordStatus, PaymentType, WatcherStatus, settings
from src.core.exceptions import BillingException, ResourceNotFoundException
from src.core.models import utc_now
from src.marketplace.domain import MarketplacePolicy, Payment
from src.marketplace.infrastructure.repositories import (
    CustomerRepository,
    OperatorRepository,
    PaymentRepository,
    WatcherTypeRepository,
)
from src.shared.infrastructure.grafana import get_grafana_exporter
from src.shared.infrastructure.logging import get_logger, log_latency
from src.watchers.domain import BillingCalculator, BillingRecord, Watcher
from src.watchers.infrastructure.repositories import WatcherRepository

logger = get_logger(__name__)


# ========== Payment Rail Interface ==========

@dataclass
class ChargeResult:
    """Outcome of one charge attempt on the payment rail."""
    success: bool
    tx_hash: Optional[str] = None
    failure_reason: Optional[str] = None


class IPaymentRail(ABC):
    """Settlement collaborator for recurring charges."""

    name: str = "rail"

    @abstractmethod
    async def charge(self, watcher: Watcher, amount: Decimal) -> ChargeResult:
        """
        Charge the watcher's customer.

        Returns a declined result for a refused payment; raises for system
        failures.
        """
        pass


# ========== Results ==========

@dataclass
class BillingOutcome:
    """Result of processing one watcher."""
    watcher_id: str
    success: bool
    reason: Optional[str] = None
    billing_record: Optional[BillingRecord] = None
    payment: Optional[Payment] = None
    next_billing_at: Optional[datetime] = None
    watcher_status: Optional[str] = None
    system_error: bool = False

    @property
    def processed(self) -> bool:
        """False for no-op outcomes (one-time, inactive or not yet due)."""
        return self.billing_record is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "watcherId": self.watcher_id,
            "success": self.success,
            "reason": self.reason,
            "billingRecord": self.billing_record.to_document() if self.billing_record else None,
            "paymentId": self.payment.id if self.payment else None,
            "nextBillingAt": self.next_billing_at.isoformat() if self.next_billing_at else None,
            "watcherStatus": self.watcher_status,
            "systemError": self.system_error,
        }


@dataclass
class BillingRunSummary:
    total_due: int = 0
    successful: int = 0
    failed: int = 0
    suspended: int = 0
    skipped: int = 0
    details: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": {
                "totalDue": self.total_due,
                "successful": self.successful,
                "failed": self.failed,
                "suspended": self.suspended,
                "skipped": self.skipped,
            },
            "details": self.details,
        }


class BillingService:
    """Processes recurring billing for due watchers."""

    def __init__(
        self,
        watchers: WatcherRepository,
        watcher_types: WatcherTypeRepository,
        operators: OperatorRepository,
        customers: CustomerRepository,
        payments: PaymentRepository,
        payment_rail: IPaymentRail,
        policy: Callable[[], MarketplacePolicy],
        clock: Callable[[], datetime] = utc_now,
    ):
        self._watchers = watchers
        self._watcher_types = watcher_types
        self._operators = operators
        self._customers = customers
        self._payments = payments
        self._rail = payment_rail
        self._policy = policy
        self._clock = clock

    async def due_billings(self, now: Optional[datetime] = None) -> List[Watcher]:
        """Active recurring watchers whose ``next_billing_at`` has passed."""
        now = now or self._clock()
        watchers = await self._watchers.list_active()
        return [w for w in watchers if w.is_billing_due(now)]

    async def process_billing(self, watcher_id: str) -> BillingOutcome:
        """
        Bill one watcher.

        Raises:
            ResourceNotFoundException: unknown watcher or its type
        """
        watcher = await self._watchers.get(watcher_id)
        if watcher is None:
            raise ResourceNotFoundException("Watcher", watcher_id)

        now = self._clock()

        if not watcher.is_recurring:
            return BillingOutcome(
                watcher_id=watcher_id,
                success=False,
                reason="Watcher has one-time billing cycle",
                watcher_status=watcher.status,
            )

        if not watcher.is_active:
            return self._inactive(watcher)

        if watcher.next_billing_at is None or watcher.next_billing_at > now:
            return BillingOutcome(
                watcher_id=watcher_id,
                success=False,
                reason="Billing not due yet",
                next_billing_at=watcher.next_billing_at,
                watcher_status=watcher.status,
            )

        watcher_type = await self._watcher_types.get(watcher.type_id)
        if watcher_type is None:
            raise ResourceNotFoundException("WatcherType", watcher.type_id)

        billing_date = watcher.next_billing_at
        amount = watcher_type.price

        try:
            charge = await self._rail.charge(watcher, amount)
        except Exception as e:
            failure = BillingException(watcher_id, f"System error: {e}", system_error=True)
            return await self._fail(watcher, billing_date, now, amount, failure)

        if not charge.success:
            failure = BillingException(watcher_id, charge.failure_reason or "Payment declined")
            return await self._fail(watcher, billing_date, now, amount, failure)

        return await self._settle(watcher, billing_date, now, amount, charge)

    @staticmethod
    def _inactive(watcher: Watcher) -> BillingOutcome:
        return BillingOutcome(
            watcher_id=watcher.id,
            success=False,
            reason=f"Watcher is {watcher.status}",
            next_billing_at=watcher.next_billing_at,
            watcher_status=watcher.status,
        )

    async def _settle(
        self,
        watcher: Watcher,
        billing_date: datetime,
        now: datetime,
        amount: Decimal,
        charge: ChargeResult,
    ) -> BillingOutcome:
        operator_share, platform_share = self._policy().revenue_split.split(amount)
        payment = Payment(
            watcher_id=watcher.id,
            operator_id=watcher.operator_id,
            customer_id=watcher.customer_id,
            type=PaymentType.RECURRING,
            amount=amount,
            operator_share=operator_share,
            platform_share=platform_share,
            network=settings.payment_network,
            tx_hash=charge.tx_hash,
            created_at=now,
        )

        record = BillingRecord(
            billing_date=billing_date,
            processed_at=now,
            amount=amount,
            status=BillingRecordStatus.SUCCESS,
            payment_id=payment.id,
        )
        next_billing_at = BillingCalculator.next_billing_date(watcher.billing_cycle, billing_date)

        # The watcher may have been cancelled while the charge was in flight
        applied = False

        def apply(entity: Watcher) -> None:
            nonlocal applied
            if not entity.is_active:
                return
            entity.record_billing(record)
            entity.next_billing_at = next_billing_at
            applied = True

        stored = await self._watchers.modify(watcher.id, apply)
        if not applied:
            logger.warning(
                "Watcher left active state during charge, billing not recorded",
                extra={"watcher_id": watcher.id, "tx_hash": charge.tx_hash}
            )
            return self._inactive(stored or watcher)

        await self._payments.add(payment)
        await self._operators.increment_stat(watcher.operator_id, "total_earned", operator_share)
        await self._customers.increment_stat(watcher.customer_id, "total_spent", amount)

        logger.info(
            "Billing successful",
            extra={
                "watcher_id": watcher.id,
                "payment_id": payment.id,
                "next_billing_at": next_billing_at.isoformat() if next_billing_at else None,
            }
        )

        return BillingOutcome(
            watcher_id=watcher.id,
            success=True,
            billing_record=record,
            payment=payment,
            next_billing_at=next_billing_at,
            watcher_status=WatcherStatus.ACTIVE.value,
        )

    async def _fail(
        self,
        watcher: Watcher,
        billing_date: datetime,
        now: datetime,
        amount: Decimal,
        failure: BillingException,
    ) -> BillingOutcome:
        record = BillingRecord(
            billing_date=billing_date,
            processed_at=now,
            amount=amount,
            status=BillingRecordStatus.FAILED,
            failure_reason=failure.message,
        )

        applied = False

        def apply(entity: Watcher) -> None:
            nonlocal applied
            if not entity.is_active:
                return
            entity.record_billing(record)
            applied = entity.suspend()

        stored = await self._watchers.modify(watcher.id, apply)
        if not applied:
            logger.warning(
                "Watcher left active state during charge, failure not recorded",
                extra={"watcher_id": watcher.id, "error": failure.message}
            )
            return self._inactive(stored or watcher)

        log = logger.error if failure.system_error else logger.warning
        log(
            "Billing failed, watcher suspended",
            extra={"error": failure.message, "reason": failure.reason, **failure.details}
        )

        return BillingOutcome(
            watcher_id=watcher.id,
            success=False,
            reason=failure.message,
            billing_record=record,
            next_billing_at=watcher.next_billing_at,
            watcher_status=WatcherStatus.SUSPENDED.value,
            system_error=failure.system_error,
        )

    async def process_all_due_billings(self) -> BillingRunSummary:
        """Bill every due watcher; one watcher's error never stops the run."""
        summary = BillingRunSummary()

        with log_latency(logger, "billing_run"):
            due = await self.due_billings()
            summary.total_due = len(due)

            for watcher in due:
                try:
                    outcome = await self.process_billing(watcher.id)
                except Exception as e:
                    logger.error(
                        "Billing processing error",
                        extra={"watcher_id": watcher.id, "error": str(e)}
                    )
                    summary.failed += 1
                    summary.details.append({
                        "watcherId": watcher.id,
                        "success": False,
                        "error": str(e),
                    })
                    continue

                if outcome.success:
                    summary.successful += 1
                elif not outcome.processed:
                    summary.skipped += 1
                else:
                    summary.failed += 1
                    if outcome.watcher_status == WatcherStatus.SUSPENDED:
                        summary.suspended += 1
                summary.details.append(outcome.to_dict())

        await get_grafana_exporter().export_counters(
            "billing",
            {
                "sentinel_billing_due": summary.total_due,
                "sentinel_billing_successful": summary.successful,
                "sentinel_billing_failed": summary.failed,
                "sentinel_billing_suspended": summary.suspended,
            }
        )
        return summary

    async def billing_status(self, watcher_id: str) -> Dict[str, Any]:
        """Billing snapshot with payment history for one watcher."""
        watcher = await self._watchers.get(watcher_id)
        if watcher is None:
            raise ResourceNotFoundException("Watcher", watcher_id)

        watcher_type = await self._watcher_types.get(watcher.type_id)
        if watcher_type is None:
            raise ResourceNotFoundException("WatcherType", watcher.type_id)

        now = self._clock()
        days_until_next = None

        if not watcher.is_recurring:
            status = "one-time"
        elif watcher.status == WatcherStatus.SUSPENDED:
            status = "suspended"
        elif watcher.status == WatcherStatus.CANCELLED:
            status = "cancelled"
        elif watcher.next_billing_at is not None and watcher.next_billing_at <= now:
            status = "overdue"
        else:
            status = "active"
            if watcher.next_billing_at is not None:
                seconds = (watcher.next_billing_at - now).total_seconds()
                days_until_next = -(-int(seconds) // 86400)

        payments = await self._payments.list(watcher_id=watcher_id)
        total_paid = sum((p.amount for p in payments), Decimal("0"))

        return {
            "watcher": {
                "id": watcher.id,
                "status": watcher.status,
                "billingCycle": watcher.billing_cycle,
                "nextBillingAt": watcher.next_billing_at.isoformat() if watcher.next_billing_at else None,
                "createdAt": watcher.created_at.isoformat(),
            },
            "billing": {
                "status": status,
                "price": str(watcher_type.price),
                "daysUntilNextBilling": days_until_next,
                "totalBillings": len(watcher.billing_history),
                "totalPaid": str(total_paid),
            },
            "history": {
                "billingRecords": [r.to_document() for r in watcher.billing_history],
                "payments": [
                    {
                        "id": p.id,
                        "type": p.type,
                        "amount": str(p.amount),
                        "createdAt": p.created_at.isoformat(),
                        "network": p.network,
                        "txHash": p.tx_hash,
                    }
                    for p in payments
                ],
            },
        }
