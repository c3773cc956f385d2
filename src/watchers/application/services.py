"""
Watcher Lifecycle Service
=========================

Creation (single and batch), cancellation, refund eligibility and reads.

Creation validates in a fixed order and stops at the first failure:
polling -> ttl -> retry policy -> idempotency replay -> customer -> type ->
free tier -> operator -> webhook -> billing cycle -> executor config.
Only then are the watcher, its payment and its receipt written.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional
from urllib.parse import urlparse

from src.config import BILLING_CYCLES, BillingCycle, PaymentType, WatcherStatus, settings
from src.core.exceptions import (
    AlreadyCancelledException,
    ApplicationException,
    InvalidConfigException,
    ResourceNotFoundException,
)
from src.core.models import utc_now
from src.infrastructure.executors import ExecutorRegistry
from src.marketplace.application.services import CustomerService, ReceiptService
from src.marketplace.domain import (
    FulfillmentFingerprint,
    MarketplacePolicy,
    Payment,
    Receipt,
)
from src.marketplace.infrastructure.repositories import (
    OperatorRepository,
    PaymentRepository,
    WatcherTypeRepository,
)
from src.shared.infrastructure.logging import get_logger
from src.watchers.application.dto import CreateWatcherRequest
from src.watchers.domain import BillingCalculator, RefundEligibility, RetryPolicy, Watcher
from src.watchers.infrastructure.repositories import WatcherRepository

logger = get_logger(__name__)

DEFAULT_CUSTOMER_ID = "anonymous"


@dataclass
class CreationResult:
    """A created or replayed watcher with its receipt."""
    idempotent: bool
    receipt: Receipt
    watcher: Optional[Watcher] = None
    payment: Optional[Payment] = None

    def watcher_summary(self) -> Dict[str, Any]:
        if self.watcher is None:
            return {"id": self.receipt.watcher_id}
        return {
            "id": self.watcher.id,
            "typeId": self.watcher.type_id,
            "status": self.watcher.status,
            "pollingInterval": self.watcher.polling_interval,
            "ttl": self.watcher.ttl,
            "expiresAt": self.watcher.expires_at.isoformat() if self.watcher.expires_at else None,
            "billingCycle": self.watcher.billing_cycle,
            "nextBillingAt": (
                self.watcher.next_billing_at.isoformat() if self.watcher.next_billing_at else None
            ),
        }

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": True,
            "idempotent": self.idempotent,
            "watcher": self.watcher_summary(),
            "receipt": self.receipt.to_document(),
        }
        if self.idempotent:
            body["message"] = "Returning existing receipt (idempotent request)"
        else:
            body["payment"] = {
                "amount": str(self.payment.amount),
                "operatorShare": str(self.payment.operator_share),
                "platformShare": str(self.payment.platform_share),
            }
            body["message"] = "Watcher created. Monitoring will begin on next cron cycle."
        return body


@dataclass
class BatchItemOutcome:
    """Result of one batch item; exactly one of result/error is set."""
    index: int
    result: Optional[CreationResult] = None
    error: Optional[Exception] = None

    @property
    def success(self) -> bool:
        return self.error is None


class WatcherLifecycleService:
    """Create, cancel and inspect watchers."""

    def __init__(
        self,
        watchers: WatcherRepository,
        watcher_types: WatcherTypeRepository,
        operators: OperatorRepository,
        payments: PaymentRepository,
        customers: CustomerService,
        receipts: ReceiptService,
        executors: ExecutorRegistry,
        policy: Callable[[], MarketplacePolicy],
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._watchers = watchers
        self._watcher_types = watcher_types
        self._operators = operators
        self._payments = payments
        self._customers = customers
        self._receipts = receipts
        self._executors = executors
        self._policy = policy
        self._clock = clock
        self._sleep = sleep

    # ========== Validation ==========

    @staticmethod
    def _is_number(value: Any) -> bool:
        return isinstance(value, (int, float)) and not isinstance(value, bool)

    def _validate_polling(self, value: Any, policy: MarketplacePolicy) -> int:
        if value is None:
            return policy.default_polling_interval
        if not self._is_number(value) or value not in policy.polling_intervals:
            raise InvalidConfigException(
                "pollingInterval",
                "Invalid pollingInterval",
                allowed=policy.polling_intervals
            )
        return int(value)

    def _validate_ttl(self, value: Any, policy: MarketplacePolicy) -> Optional[int]:
        if value is None:
            return None
        if not self._is_number(value) or not policy.ttl_allowed(value):
            raise InvalidConfigException(
                "ttl",
                "Invalid ttl",
                allowed=policy.ttl_options + [None]
            )
        return int(value)

    def _validate_retry_policy(self, value: Any, policy: MarketplacePolicy) -> RetryPolicy:
        limits = policy.retry
        if value is None:
            return RetryPolicy(
                max_retries=limits.default_max_retries,
                backoff_ms=limits.default_backoff_ms,
            )

        max_retries = value.get("maxRetries") if isinstance(value, Mapping) else None
        backoff_ms = value.get("backoffMs") if isinstance(value, Mapping) else None
        valid = (
            isinstance(max_retries, int)
            and not isinstance(max_retries, bool)
            and 0 <= max_retries <= limits.max_retries_limit
            and self._is_number(backoff_ms)
            and backoff_ms >= 0
        )
        if not valid:
            raise InvalidConfigException(
                "retryPolicy",
                "Invalid retryPolicy",
                details={
                    "format": f"{{ maxRetries: integer (0-{limits.max_retries_limit}), backoffMs: number }}",
                    "maxRetries": limits.max_retries_limit,
                }
            )
        return RetryPolicy(max_retries=max_retries, backoff_ms=backoff_ms)

    @staticmethod
    def validate_webhook(value: Any, field: str = "webhook") -> str:
        """Accept only absolute http(s) URLs with a host."""
        try:
            parsed = urlparse(value) if isinstance(value, str) else None
            host = parsed.hostname if parsed else None
        except ValueError:
            parsed, host = None, None
        if parsed is None or parsed.scheme not in ("http", "https") or not host:
            raise InvalidConfigException(field, "Valid webhook URL required")
        return value

    @staticmethod
    def _validate_billing_cycle(value: Any) -> str:
        if value is None:
            return BillingCycle.ONE_TIME.value
        if value not in BILLING_CYCLES:
            raise InvalidConfigException(
                "billingCycle",
                'billingCycle must be "one-time", "weekly", or "monthly"',
                allowed=BILLING_CYCLES
            )
        return value

    def _validate_executor_config(self, executor_id: Optional[str], config: Any) -> None:
        executor = self._executors.get(executor_id)
        if executor is None:
            return
        validation = executor.validate(config)
        if validation is not None and not validation.valid:
            raise InvalidConfigException(
                "config",
                "Invalid config",
                details={"errors": validation.errors}
            )

    # ========== Creation ==========

    async def create_watcher(
        self,
        request: CreateWatcherRequest,
        customer_id: Optional[str] = None
    ) -> CreationResult:
        """
        Create a paid watcher, or replay an identical earlier request.

        Args:
            request: Creation body
            customer_id: Caller identity from the X-Customer-ID header;
                the body's customerId takes precedence

        Raises:
            InvalidConfigException: bad input (400)
            ResourceNotFoundException: unknown type or operator (404)
            TierLimitExceededException: free tier exhausted (402)
        """
        policy = self._policy()
        customer_id = request.customer_id or customer_id or DEFAULT_CUSTOMER_ID

        polling_interval = self._validate_polling(request.polling_interval, policy)
        ttl = self._validate_ttl(request.ttl, policy)
        retry_policy = self._validate_retry_policy(request.retry_policy, policy)

        digest = FulfillmentFingerprint.compute(
            request.type_id, request.config, request.webhook, customer_id
        )

        async with self._receipts.guard(digest):
            existing = await self._receipts.lookup(digest)
            if existing is not None:
                logger.info(
                    "Idempotent creation replayed",
                    extra={"receipt_id": existing.id, "watcher_id": existing.watcher_id}
                )
                return CreationResult(
                    idempotent=True,
                    receipt=existing,
                    watcher=await self._watchers.get(existing.watcher_id),
                )

            customer = await self._customers.get_or_create(customer_id)

            if not request.type_id:
                raise InvalidConfigException("typeId", "typeId is required")
            watcher_type = await self._watcher_types.get(request.type_id)
            if watcher_type is None:
                raise ResourceNotFoundException("WatcherType", request.type_id)

            self._customers.check_free_capacity(customer)
            if customer.is_free:
                if polling_interval < policy.free_tier.min_polling_interval:
                    logger.info(
                        "Free tier polling floor applied",
                        extra={"customer_id": customer_id, "requested": polling_interval}
                    )
                    polling_interval = policy.free_tier.min_polling_interval

            operator = await self._operators.get(watcher_type.operator_id)
            if operator is None:
                raise ResourceNotFoundException("Operator", watcher_type.operator_id)

            webhook = self.validate_webhook(request.webhook)
            billing_cycle = self._validate_billing_cycle(request.billing_cycle)

            now = self._clock()
            next_billing_at = BillingCalculator.next_billing_date(billing_cycle, now)

            self._validate_executor_config(watcher_type.executor_id, request.config)

            price = watcher_type.price
            customer = await self._customers.record_watcher_purchase(customer_id, price)

            watcher = await self._watchers.add(Watcher(
                type_id=watcher_type.id,
                operator_id=operator.id,
                customer_id=customer_id,
                config=request.config,
                webhook=webhook,
                created_at=now,
                expires_at=now + timedelta(hours=ttl) if ttl is not None else None,
                billing_cycle=billing_cycle,
                next_billing_at=next_billing_at,
                polling_interval=polling_interval,
                ttl=ttl,
                retry_policy=retry_policy,
                tier=customer.tier,
            ))

            operator_share, platform_share = policy.revenue_split.split(price)
            payment = await self._payments.add(Payment(
                watcher_id=watcher.id,
                operator_id=operator.id,
                customer_id=customer_id,
                type=PaymentType.CREATION,
                amount=price,
                operator_share=operator_share,
                platform_share=platform_share,
                network=settings.payment_network,
                created_at=now,
            ))

            receipt = await self._receipts.issue(
                digest,
                watcher_id=watcher.id,
                type_id=watcher_type.id,
                amount=price,
                customer_id=customer_id,
                operator_id=operator.id,
                payment_id=payment.id,
                timestamp=now,
            )

        await self._operators.increment_stat(operator.id, "watchers_created")
        await self._watcher_types.increment_stat(watcher_type.id, "instances")

        logger.info(
            "Watcher created",
            extra={
                "watcher_id": watcher.id,
                "type_id": watcher_type.id,
                "customer_id": customer_id,
                "receipt_id": receipt.id,
            }
        )
        return CreationResult(idempotent=False, receipt=receipt, watcher=watcher, payment=payment)

    async def create_batch(
        self,
        items: Any,
        customer_id: Optional[str] = None
    ) -> List[BatchItemOutcome]:
        """
        Run the full creation pipeline for each item, in order.

        Items fail independently; a pause separates consecutive items.

        Raises:
            InvalidConfigException: not a list of 1..batch_max_items entries
        """
        policy = self._policy()
        if not isinstance(items, list) or not 1 <= len(items) <= policy.batch_max_items:
            raise InvalidConfigException(
                "watchers",
                f"watchers must be an array of 1-{policy.batch_max_items} items",
                details={"maxItems": policy.batch_max_items}
            )

        outcomes: List[BatchItemOutcome] = []
        for index, item in enumerate(items):
            if index > 0 and policy.batch_pause_ms > 0:
                await self._sleep(policy.batch_pause_ms / 1000)

            try:
                if not isinstance(item, dict):
                    raise InvalidConfigException("watchers", f"Item {index} must be an object")
                request = CreateWatcherRequest.model_validate(item)
                result = await self.create_watcher(request, customer_id)
                outcomes.append(BatchItemOutcome(index=index, result=result))
            except ApplicationException as e:
                outcomes.append(BatchItemOutcome(index=index, error=e))
            except Exception as e:
                logger.error(
                    "Batch item failed unexpectedly",
                    extra={"index": index, "error": str(e)}
                )
                outcomes.append(BatchItemOutcome(index=index, error=e))

        logger.info(
            "Batch creation finished",
            extra={
                "total": len(outcomes),
                "successful": sum(1 for o in outcomes if o.success),
            }
        )
        return outcomes

    # ========== Cancellation & refunds ==========

    async def cancel_watcher(self, watcher_id: str, reason: Optional[str] = None) -> Watcher:
        """
        Cancel a watcher and stop future billing. No proration.

        Raises:
            ResourceNotFoundException: unknown watcher
            AlreadyCancelledException: watcher was already cancelled
        """
        now = self._clock()

        def apply(entity: Watcher) -> None:
            if entity.status == WatcherStatus.CANCELLED:
                raise AlreadyCancelledException(watcher_id)
            entity.cancel(now, reason)

        watcher = await self._watchers.modify(watcher_id, apply)
        if watcher is None:
            raise ResourceNotFoundException("Watcher", watcher_id)

        logger.info("Watcher cancelled", extra={"watcher_id": watcher_id, "reason": reason})
        return watcher

    async def refund_status(self, watcher_id: str) -> Dict[str, Any]:
        watcher = await self.get_watcher(watcher_id)
        eligibility: RefundEligibility = watcher.refund_eligibility(
            self._clock(),
            self._policy().refund_window_minutes,
        )
        return {
            "watcherId": watcher.id,
            "status": watcher.status,
            "refundEligible": eligibility.eligible,
            "reason": eligibility.reason,
            "details": eligibility.details,
        }

    # ========== Reads ==========

    async def get_watcher(self, watcher_id: str) -> Watcher:
        watcher = await self._watchers.get(watcher_id)
        if watcher is None:
            raise ResourceNotFoundException("Watcher", watcher_id)
        return watcher

    async def describe_watcher(self, watcher_id: str) -> Dict[str, Any]:
        """Full watcher document plus its type's name."""
        watcher = await self.get_watcher(watcher_id)
        watcher_type = await self._watcher_types.get(watcher.type_id)
        document = watcher.to_document()
        document["typeName"] = watcher_type.name if watcher_type else "Unknown"
        return document

    async def list_watchers(self, customer_id: Optional[str] = None) -> List[Watcher]:
        watchers = await self._watchers.list_by_customer(customer_id)
        return sorted(watchers, key=lambda w: w.created_at, reverse=True)

    async def all_watchers(self) -> List[Watcher]:
        return await self._watchers.list()
