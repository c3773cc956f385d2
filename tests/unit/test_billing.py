"""
Unit tests for recurring billing: due detection, date advancement, payment
records and suspension on failed charges.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from src.config import BillingRecordStatus, PaymentType, WatcherStatus
from src.core.exceptions import ResourceNotFoundException
from tests.conftest import START, make_watcher_request


async def create_recurring_watcher(container, watcher_type, cycle="monthly", **overrides):
    result = await container.lifecycle.create_watcher(
        make_watcher_request(watcher_type.id, billing_cycle=cycle, **overrides)
    )
    return result.watcher


class TestProcessBilling:
    """Single watcher billing."""

    async def test_successful_charge_advances_from_due_date(self, container, operator, watcher_type,
                                                            paid_customer, clock, payment_rail):
        watcher = await create_recurring_watcher(container, watcher_type)
        assert watcher.next_billing_at == datetime(2026, 4, 2, 12, 0, tzinfo=timezone.utc)

        # Processed a day late; the next date still follows the due date
        clock.now = datetime(2026, 4, 3, 8, 0, tzinfo=timezone.utc)
        outcome = await container.billing.process_billing(watcher.id)

        assert outcome.success
        assert outcome.next_billing_at == datetime(2026, 5, 2, 12, 0, tzinfo=timezone.utc)
        assert payment_rail.charges == [Decimal("0.10")]

        stored = await container.watchers.get(watcher.id)
        assert stored.status == WatcherStatus.ACTIVE
        assert stored.next_billing_at == datetime(2026, 5, 2, 12, 0, tzinfo=timezone.utc)
        assert len(stored.billing_history) == 1
        record = stored.billing_history[0]
        assert record.status == BillingRecordStatus.SUCCESS
        assert record.billing_date == datetime(2026, 4, 2, 12, 0, tzinfo=timezone.utc)
        assert record.payment_id == outcome.payment.id

        payment = outcome.payment
        assert payment.type == PaymentType.RECURRING
        assert payment.amount == Decimal("0.10")
        assert payment.tx_hash == "0xtest"

        assert (await container.operators.get(operator.id)).stats.total_earned == Decimal("0.08")
        customer = await container.customer_service.get(paid_customer)
        assert customer.stats.total_spent == Decimal("1.20")

    async def test_weekly_cycle(self, container, watcher_type, paid_customer, clock):
        watcher = await create_recurring_watcher(container, watcher_type, cycle="weekly")
        assert watcher.next_billing_at == START + timedelta(days=7)

        clock.advance(days=7)
        outcome = await container.billing.process_billing(watcher.id)
        assert outcome.next_billing_at == START + timedelta(days=14)

    async def test_not_due_yet(self, container, watcher_type, paid_customer, payment_rail):
        watcher = await create_recurring_watcher(container, watcher_type)

        outcome = await container.billing.process_billing(watcher.id)

        assert not outcome.success
        assert not outcome.processed
        assert outcome.reason == "Billing not due yet"
        assert payment_rail.charges == []

    async def test_one_time_watcher(self, container, watcher_type):
        result = await container.lifecycle.create_watcher(make_watcher_request(watcher_type.id))

        outcome = await container.billing.process_billing(result.watcher.id)
        assert outcome.reason == "Watcher has one-time billing cycle"

    async def test_declined_charge_suspends(self, container, watcher_type, paid_customer, clock, payment_rail):
        watcher = await create_recurring_watcher(container, watcher_type)
        payment_rail.outcomes = [False]

        clock.advance(days=31)
        outcome = await container.billing.process_billing(watcher.id)

        assert not outcome.success
        assert outcome.reason == "Payment declined"
        assert outcome.watcher_status == WatcherStatus.SUSPENDED

        stored = await container.watchers.get(watcher.id)
        assert stored.status == WatcherStatus.SUSPENDED
        assert stored.next_billing_at == watcher.next_billing_at
        assert stored.billing_history[0].status == BillingRecordStatus.FAILED
        assert stored.billing_history[0].failure_reason == "Payment declined"
        assert await container.payments.list(type=PaymentType.RECURRING) == []

    async def test_rail_error_suspends(self, container, watcher_type, paid_customer, clock, payment_rail):
        watcher = await create_recurring_watcher(container, watcher_type)
        payment_rail.outcomes = [RuntimeError("rail offline")]

        clock.advance(days=31)
        outcome = await container.billing.process_billing(watcher.id)

        assert outcome.reason == "System error: rail offline"
        assert outcome.system_error
        assert outcome.to_dict()["systemError"] is True
        assert (await container.watchers.get(watcher.id)).status == WatcherStatus.SUSPENDED

    async def test_decline_is_not_a_system_error(self, container, watcher_type, paid_customer, clock,
                                                 payment_rail):
        watcher = await create_recurring_watcher(container, watcher_type)
        payment_rail.outcomes = [False]

        clock.advance(days=31)
        outcome = await container.billing.process_billing(watcher.id)
        assert not outcome.system_error

    async def test_unknown_watcher(self, container):
        with pytest.raises(ResourceNotFoundException):
            await container.billing.process_billing("missing")

    async def test_suspended_watcher_is_not_charged_again(self, container, watcher_type, paid_customer,
                                                          clock, payment_rail):
        watcher = await create_recurring_watcher(container, watcher_type)
        payment_rail.outcomes = [False]
        clock.advance(days=31)
        await container.billing.process_billing(watcher.id)

        outcome = await container.billing.process_billing(watcher.id)

        assert not outcome.processed
        assert outcome.watcher_status == WatcherStatus.SUSPENDED
        assert len(payment_rail.charges) == 1


class TestCancelledDuringCharge:
    """A watcher cancelled while its charge is in flight stays cancelled."""

    @pytest.fixture
    def cancel_mid_charge(self, container, payment_rail):
        async def cancel(watcher):
            await container.lifecycle.cancel_watcher(watcher.id, "changed my mind")

        payment_rail.during_charge = cancel

    async def test_decline_does_not_suspend(self, container, watcher_type, paid_customer, clock,
                                            payment_rail, cancel_mid_charge):
        watcher = await create_recurring_watcher(container, watcher_type)
        payment_rail.outcomes = [False]

        clock.advance(days=31)
        outcome = await container.billing.process_billing(watcher.id)

        assert not outcome.processed
        assert outcome.watcher_status == WatcherStatus.CANCELLED
        stored = await container.watchers.get(watcher.id)
        assert stored.status == WatcherStatus.CANCELLED
        assert stored.next_billing_at is None
        assert stored.billing_history == []

    async def test_approval_does_not_restore_billing(self, container, operator, watcher_type,
                                                     paid_customer, clock, payment_rail,
                                                     cancel_mid_charge):
        watcher = await create_recurring_watcher(container, watcher_type)

        clock.advance(days=31)
        outcome = await container.billing.process_billing(watcher.id)

        assert not outcome.success
        stored = await container.watchers.get(watcher.id)
        assert stored.status == WatcherStatus.CANCELLED
        assert stored.next_billing_at is None
        assert stored.billing_history == []
        assert await container.payments.list(type=PaymentType.RECURRING) == []
        assert (await container.operators.get(operator.id)).stats.total_earned == Decimal("0")

    async def test_run_counts_it_as_skipped(self, container, watcher_type, paid_customer, clock,
                                            payment_rail, cancel_mid_charge):
        await create_recurring_watcher(container, watcher_type)
        payment_rail.outcomes = [False]

        clock.advance(days=31)
        summary = await container.billing.process_all_due_billings()

        assert summary.total_due == 1
        assert summary.skipped == 1
        assert summary.failed == 0
        assert summary.suspended == 0


class TestBillingRun:
    """The cron billing tick."""

    async def test_run_over_due_watchers(self, container, watcher_type, paid_customer, clock, payment_rail):
        first = await create_recurring_watcher(container, watcher_type, config={"target": "ETH"})
        second = await create_recurring_watcher(container, watcher_type, config={"target": "BTC"})
        await create_recurring_watcher(container, watcher_type, cycle="one-time", config={"target": "SOL"})
        payment_rail.outcomes = [True, False]

        clock.advance(days=31)
        summary = await container.billing.process_all_due_billings()

        assert summary.total_due == 2
        assert summary.successful == 1
        assert summary.failed == 1
        assert summary.suspended == 1
        assert {d["watcherId"] for d in summary.details} == {first.id, second.id}

        body = summary.to_dict()
        assert body["summary"] == {
            "totalDue": 2, "successful": 1, "failed": 1, "suspended": 1, "skipped": 0
        }

        # Suspended and freshly billed watchers are not due on the next tick
        assert (await container.billing.process_all_due_billings()).total_due == 0

    async def test_cancelled_watcher_is_never_billed(self, container, watcher_type, paid_customer,
                                                     clock, payment_rail):
        watcher = await create_recurring_watcher(container, watcher_type)
        await container.lifecycle.cancel_watcher(watcher.id)

        clock.advance(days=60)
        summary = await container.billing.process_all_due_billings()

        assert summary.total_due == 0
        assert payment_rail.charges == []


class TestBillingStatus:
    async def test_active_recurring_status(self, container, watcher_type, paid_customer, clock):
        watcher = await create_recurring_watcher(container, watcher_type, cycle="weekly")
        clock.advance(days=2, hours=1)

        status = await container.billing.billing_status(watcher.id)

        assert status["billing"]["status"] == "active"
        assert status["billing"]["daysUntilNextBilling"] == 5
        assert status["billing"]["totalPaid"] == "0.10"
        assert len(status["history"]["payments"]) == 1

    async def test_overdue_status(self, container, watcher_type, paid_customer, clock):
        watcher = await create_recurring_watcher(container, watcher_type, cycle="weekly")
        clock.advance(days=8)

        status = await container.billing.billing_status(watcher.id)
        assert status["billing"]["status"] == "overdue"
        assert status["billing"]["daysUntilNextBilling"] is None
