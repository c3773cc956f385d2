"""
Watcher External Integrations
=============================

External services for the watcher engines:
- Webhook delivery with exponential backoff retry
- Simulated payment rail for recurring billing
- APScheduler trigger for in-process check/billing ticks
"""

import asyncio
import random
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from src.config import settings
from src.core.models import generate_id, utc_now
from src.shared.infrastructure.logging import get_logger
from src.watchers.application.billing import ChargeResult, IPaymentRail
from src.watchers.domain import RetryPolicy, Watcher

logger = get_logger(__name__)

WEBHOOK_SOURCE = "x402-sentinel"
WEBHOOK_EVENT = "watcher_triggered"
USER_AGENT = "x402-sentinel/2.0"


@dataclass
class DeliveryResult:
    """Outcome of a webhook delivery including all retries."""
    success: bool
    attempts: int
    status_code: Optional[int] = None
    error: Optional[str] = None

    @property
    def retry_count(self) -> int:
        return max(0, self.attempts - 1)


@dataclass
class WebhookTestResult:
    """Outcome of a one-shot test delivery."""
    success: bool
    url: str
    response_time_ms: int
    payload: Dict[str, Any]
    status_code: Optional[int] = None
    status_text: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None


class WebhookClient:
    """
    Webhook client with exponential backoff retry.

    Attempt ``n`` (0-based) that fails waits ``backoff_ms * 2**n`` ms before
    the next one; at most ``max_retries + 1`` attempts are made. Any 2xx
    response is a success.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._http_client = client
        self._owns_client = client is None
        self._timeout = timeout_seconds or settings.webhook_timeout_seconds
        self._sleep = sleep

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    @staticmethod
    def build_payload(
        watcher: Watcher,
        data: Any,
        attempt: int,
        max_attempts: int,
    ) -> Dict[str, Any]:
        """Outbound envelope; ``attempt`` is 1-based."""
        return {
            "event": WEBHOOK_EVENT,
            "watcher": {
                "id": watcher.id,
                "typeId": watcher.type_id,
            },
            "data": data,
            "timestamp": utc_now().isoformat(),
            "source": WEBHOOK_SOURCE,
            "delivery": {
                "attempt": attempt,
                "maxAttempts": max_attempts,
            },
        }

    async def deliver(
        self,
        watcher: Watcher,
        data: Any,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> DeliveryResult:
        """
        POST the trigger envelope to the watcher's webhook.

        Returns:
            DeliveryResult with the number of attempts made
        """
        policy = retry_policy or watcher.retry_policy
        max_attempts = policy.max_attempts
        last_status: Optional[int] = None
        last_error: Optional[str] = None

        client = await self._get_client()

        for attempt in range(max_attempts):
            payload = self.build_payload(watcher, data, attempt + 1, max_attempts)
            try:
                response = await client.post(
                    watcher.webhook,
                    json=payload,
                    headers={"User-Agent": USER_AGENT},
                    timeout=self._timeout,
                )
                last_status = response.status_code

                if response.is_success:
                    logger.info(
                        "Webhook delivered",
                        extra={
                            "watcher_id": watcher.id,
                            "status_code": response.status_code,
                            "attempt": attempt + 1
                        }
                    )
                    return DeliveryResult(
                        success=True,
                        attempts=attempt + 1,
                        status_code=response.status_code,
                    )

                last_error = f"HTTP {response.status_code}: {response.reason_phrase}"
                logger.warning(
                    "Webhook returned non-2xx",
                    extra={
                        "watcher_id": watcher.id,
                        "status_code": response.status_code,
                        "attempt": attempt + 1
                    }
                )

            except httpx.HTTPError as e:
                last_error = str(e) or type(e).__name__
                logger.warning(
                    "Webhook delivery attempt failed",
                    extra={
                        "watcher_id": watcher.id,
                        "error": last_error,
                        "attempt": attempt + 1
                    }
                )

            if attempt < max_attempts - 1:
                delay_ms = policy.backoff_ms * (2 ** attempt)
                await self._sleep(delay_ms / 1000)

        return DeliveryResult(
            success=False,
            attempts=max_attempts,
            status_code=last_status,
            error=last_error,
        )

    @staticmethod
    def build_test_payload() -> Dict[str, Any]:
        return {
            "type": "test",
            "message": f"This is a test webhook from {WEBHOOK_SOURCE}",
            "timestamp": utc_now().isoformat(),
            "sample_alert": {
                "watcherId": "test-123",
                "type": "wallet-balance",
                "triggered": True,
                "value": "1.5",
                "threshold": "1.0",
            },
        }

    async def send_test(self, url: str) -> WebhookTestResult:
        """Send a single test payload, no retries."""
        payload = self.build_test_payload()
        client = await self._get_client()
        start = time.perf_counter()

        try:
            response = await client.post(
                url,
                json=payload,
                headers={"User-Agent": f"{USER_AGENT} (test-webhook)"},
                timeout=self._timeout,
            )
        except httpx.TimeoutException:
            error_type, error = "timeout", f"Request timed out after {self._timeout:g} seconds"
        except httpx.ConnectError:
            error_type, error = "connection", "Connection failed - could not connect to webhook URL"
        except httpx.HTTPError as e:
            error_type, error = "network", f"Network error: {e}"
        else:
            elapsed_ms = int((time.perf_counter() - start) * 1000)
            if "application/json" in response.headers.get("content-type", ""):
                try:
                    body = response.json()
                except ValueError:
                    body = response.text
            else:
                body = response.text

            return WebhookTestResult(
                success=True,
                url=url,
                response_time_ms=elapsed_ms,
                payload=payload,
                status_code=response.status_code,
                status_text=response.reason_phrase,
                headers=dict(response.headers),
                body=body,
            )

        elapsed_ms = int((time.perf_counter() - start) * 1000)
        logger.info(
            "Test webhook failed",
            extra={"url": url, "error_type": error_type, "response_time_ms": elapsed_ms}
        )
        return WebhookTestResult(
            success=False,
            url=url,
            response_time_ms=elapsed_ms,
            payload=payload,
            error=error,
            error_type=error_type,
        )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None


class SimulatedPaymentRail(IPaymentRail):
    """
    Payment rail that approves a configurable share of charges.

    Stands in for real settlement; the random source is injectable for
    deterministic tests.
    """

    name = "simulated"

    def __init__(
        self,
        success_rate: Optional[float] = None,
        rng: Optional[random.Random] = None
    ):
        self.success_rate = settings.billing_success_rate if success_rate is None else success_rate
        self._rng = rng or random.Random()

    async def charge(self, watcher: Watcher, amount: Decimal) -> ChargeResult:
        if self._rng.random() < self.success_rate:
            return ChargeResult(success=True, tx_hash=f"0xsim{generate_id()}")
        return ChargeResult(success=False, failure_reason="Payment declined")


class CronScheduler:
    """
    Wrapper for APScheduler driving the check and billing ticks in-process.

    Disabled jobs (interval 0) are not scheduled; deployments normally rely on
    an external cron hitting the /cron endpoints instead.
    """

    def __init__(self, check_interval_seconds: int = 0, billing_interval_seconds: int = 0):
        self.check_interval_seconds = check_interval_seconds
        self.billing_interval_seconds = billing_interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    @property
    def enabled(self) -> bool:
        return self.check_interval_seconds > 0 or self.billing_interval_seconds > 0

    def _add_job(self, job_func, job_id: str, name: str, seconds: int) -> None:
        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=seconds,
            id=job_id,
            name=name,
            misfire_grace_time=60,
            max_instances=1,
            replace_existing=True
        )

    async def start(self, check_job, billing_job) -> None:
        """Start the scheduler with the given tick coroutines."""
        if self._running:
            logger.warning("Cron scheduler already running")
            return
        if not self.enabled:
            logger.info("In-process scheduling disabled, waiting for external cron")
            return

        self._scheduler = AsyncIOScheduler()

        if self.check_interval_seconds > 0:
            self._add_job(check_job, "watcher_checks", "Watcher Check Tick", self.check_interval_seconds)
        if self.billing_interval_seconds > 0:
            self._add_job(billing_job, "recurring_billing", "Recurring Billing Tick", self.billing_interval_seconds)

        self._scheduler.start()
        self._running = True

        logger.info(
            "Cron scheduler started",
            extra={
                "check_interval_seconds": self.check_interval_seconds,
                "billing_interval_seconds": self.billing_interval_seconds
            }
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("Cron scheduler stopped")

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running
