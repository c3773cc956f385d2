"""
Check / Polling Engine
======================

One tick walks every active watcher sequentially:
expire -> cadence gate -> executor check -> SLA tracking -> webhook.

Each watcher is isolated: an exception while handling one watcher is
counted as an error and the tick moves on.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from src.config import settings
from src.core.exceptions import ExecutorException, ExecutorTimeoutException, WebhookDeliveryException
from src.core.models import utc_now
from src.infrastructure.executors import CheckResult, Executor, ExecutorRegistry
from src.marketplace.infrastructure.repositories import OperatorRepository, WatcherTypeRepository
from src.shared.infrastructure.grafana import get_grafana_exporter
from src.shared.infrastructure.logging import get_logger
from src.watchers.application.sla import SLAService
from src.watchers.domain import Watcher
from src.watchers.infrastructure.external import WebhookClient
from src.watchers.infrastructure.repositories import WatcherRepository

logger = get_logger(__name__)


@dataclass
class CheckTickSummary:
    """Counters for one check tick."""
    checked: int = 0
    triggered: int = 0
    errors: int = 0
    skipped: int = 0
    expired: int = 0
    retried: int = 0
    failed_checks: int = 0
    violations: int = 0
    webhook_failures: int = 0
    duration_ms: int = 0
    timestamp: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checked": self.checked,
            "triggered": self.triggered,
            "errors": self.errors,
            "skipped": self.skipped,
            "expired": self.expired,
            "retried": self.retried,
            "failedChecks": self.failed_checks,
            "violations": self.violations,
            "durationMs": self.duration_ms,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


class CheckService:
    """Runs executor checks for due watchers and fans out webhooks."""

    def __init__(
        self,
        watchers: WatcherRepository,
        watcher_types: WatcherTypeRepository,
        operators: OperatorRepository,
        executors: ExecutorRegistry,
        webhooks: WebhookClient,
        sla: SLAService,
        clock: Callable[[], datetime] = utc_now,
        executor_timeout_seconds: Optional[float] = None,
    ):
        self._watchers = watchers
        self._watcher_types = watcher_types
        self._operators = operators
        self._executors = executors
        self._webhooks = webhooks
        self._sla = sla
        self._clock = clock
        self._executor_timeout = executor_timeout_seconds or settings.executor_timeout_seconds

    async def run_checks(self) -> CheckTickSummary:
        """Process every active watcher once."""
        start = time.perf_counter()
        now = self._clock()
        summary = CheckTickSummary(timestamp=now)

        watchers = await self._watchers.list_active()
        logger.info("Check tick started", extra={"active_watchers": len(watchers)})

        for watcher in watchers:
            try:
                await self._process(watcher, now, summary)
            except Exception as e:
                summary.errors += 1
                logger.error(
                    "Error checking watcher",
                    extra={"watcher_id": watcher.id, "error": str(e)}
                )

        summary.duration_ms = int((time.perf_counter() - start) * 1000)
        logger.info("Check tick completed", extra=summary.to_dict())

        await get_grafana_exporter().export_counters(
            "check",
            {
                "sentinel_checks_total": summary.checked,
                "sentinel_triggers_total": summary.triggered,
                "sentinel_check_errors_total": summary.errors,
                "sentinel_webhook_failures_total": summary.webhook_failures,
                "sentinel_sla_violations_total": summary.violations,
            }
        )
        return summary

    async def _resolve_executor(self, watcher: Watcher) -> Optional[Executor]:
        watcher_type = await self._watcher_types.get(watcher.type_id)
        if watcher_type is None or not watcher_type.executor_id:
            return None
        return self._executors.get(watcher_type.executor_id)

    async def run_executor(self, executor: Executor, config: Any) -> CheckResult:
        """
        Run one executor check under the time budget.

        Raises:
            ExecutorTimeoutException: the check exceeded its budget
            ExecutorException: the check raised
        """
        try:
            return await asyncio.wait_for(executor.check(config), timeout=self._executor_timeout)
        except asyncio.TimeoutError:
            raise ExecutorTimeoutException(executor.executor_id, self._executor_timeout)
        except ExecutorException:
            raise
        except Exception as e:
            raise ExecutorException(executor.executor_id, str(e) or type(e).__name__)

    async def _apply_if_active(self, watcher_id: str, fn: Callable[[Watcher], None]) -> bool:
        """
        Run ``fn`` on the stored watcher only while it is still active.

        The tick works from a snapshot taken before executor and webhook
        awaits; returns False when the stored watcher is no longer active.
        """
        applied = False

        def apply(entity: Watcher) -> None:
            nonlocal applied
            if entity.is_active:
                fn(entity)
                applied = True

        await self._watchers.modify(watcher_id, apply)
        return applied

    async def _process(self, watcher: Watcher, now: datetime, summary: CheckTickSummary) -> None:
        if watcher.is_expired(now):
            if await self._apply_if_active(watcher.id, lambda w: w.expire()):
                summary.expired += 1
                logger.info("Watcher expired", extra={"watcher_id": watcher.id})
            else:
                summary.skipped += 1
            return

        if not watcher.is_due_for_check(now):
            summary.skipped += 1
            return

        executor = await self._resolve_executor(watcher)
        if executor is None:
            summary.skipped += 1
            return

        summary.checked += 1

        try:
            result = await self.run_executor(executor, watcher.config)
        except ExecutorException as e:
            await self._record_failure(watcher, now, e.message, summary)
            return

        def record_success(entity: Watcher) -> None:
            entity.record_check_success(now, result.data)
            self._sla.apply_check_outcome(entity, True, now)

        if not await self._apply_if_active(watcher.id, record_success):
            logger.info("Watcher left active state during check", extra={"watcher_id": watcher.id})
            return

        if result.triggered:
            await self._fire(watcher, result, now, summary)

    async def _record_failure(
        self,
        watcher: Watcher,
        now: datetime,
        error: str,
        summary: CheckTickSummary
    ) -> None:
        def record_failure(entity: Watcher) -> None:
            entity.record_check_failure(now, error)
            self._sla.apply_check_outcome(entity, False, now, error)

        if not await self._apply_if_active(watcher.id, record_failure):
            logger.info("Watcher left active state during check", extra={"watcher_id": watcher.id})
            return

        summary.failed_checks += 1
        summary.errors += 1
        logger.warning("Watcher check failed", extra={"watcher_id": watcher.id, "error": error})

        violation = await self._sla.evaluate_violation(watcher.id, now)
        if violation is not None:
            summary.violations += 1

    async def _fire(
        self,
        watcher: Watcher,
        result: CheckResult,
        now: datetime,
        summary: CheckTickSummary
    ) -> None:
        current = await self._watchers.get(watcher.id)
        if current is None or not current.is_active:
            return

        delivery = await self._webhooks.deliver(watcher, result.data, watcher.retry_policy)

        if not delivery.success:
            summary.errors += 1
            summary.webhook_failures += 1
            failure = WebhookDeliveryException(
                watcher.webhook,
                delivery.attempts,
                delivery.error or "unknown error"
            )
            logger.error(
                "Webhook ultimately failed",
                extra={"watcher_id": watcher.id, "error": failure.message, **failure.details}
            )
            return

        # No usage is recorded for a watcher cancelled during delivery
        if not await self._apply_if_active(watcher.id, lambda w: w.record_trigger(now)):
            logger.info("Watcher left active state during delivery", extra={"watcher_id": watcher.id})
            return

        await self._operators.increment_stat(watcher.operator_id, "total_triggers")
        await self._watcher_types.increment_stat(watcher.type_id, "triggers")

        summary.triggered += 1
        if delivery.retry_count > 0:
            summary.retried += 1
