"""
Marketplace Application Services
================================

- ReceiptService: fulfillment receipts and the idempotency guard
- CustomerService: lazy customers, tier upgrades
- MarketplaceService: operators, watcher types, discovery and stats
"""

import asyncio
import re
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from src.config import (
    CustomerTier,
    PaymentType,
    WATCHER_CATEGORIES,
    WatcherStatus,
    WatcherTypeStatus,
    settings,
)
from src.core.exceptions import (
    ConflictException,
    InvalidConfigException,
    ResourceNotFoundException,
    TierLimitExceededException,
)
from src.core.models import utc_now
from src.infrastructure.executors import ExecutorRegistry
from src.marketplace.application.dto import CreateWatcherTypeRequest, RegisterOperatorRequest
from src.marketplace.domain import (
    Customer,
    MarketplacePolicy,
    Operator,
    Payment,
    Receipt,
    WatcherType,
)
from src.marketplace.infrastructure.repositories import (
    CustomerRepository,
    OperatorRepository,
    PaymentRepository,
    ReceiptRepository,
    WatcherTypeRepository,
)
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

WALLET_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")


class ReceiptService:
    """
    Receipts are the idempotency witness of watcher creation.

    ``guard`` serializes creation per fulfillment hash so lookup-then-create
    is atomic within the process.
    """

    def __init__(self, receipts: ReceiptRepository):
        self._receipts = receipts
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def guard(self, digest: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(digest, asyncio.Lock())
        self._waiters[digest] = self._waiters.get(digest, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[digest] -= 1
            if self._waiters[digest] == 0:
                del self._waiters[digest]
                del self._locks[digest]

    async def lookup(self, digest: str) -> Optional[Receipt]:
        return await self._receipts.get_by_hash(digest)

    async def issue(
        self,
        digest: str,
        watcher_id: str,
        type_id: str,
        amount: Decimal,
        customer_id: str,
        operator_id: str,
        payment_id: str,
        timestamp: Optional[datetime] = None,
    ) -> Receipt:
        receipt = Receipt(
            watcher_id=watcher_id,
            type_id=type_id,
            amount=amount,
            chain=settings.payment_network,
            rail=settings.payment_rail,
            timestamp=timestamp or utc_now(),
            fulfillment_hash=digest,
            customer_id=customer_id,
            operator_id=operator_id,
            payment_id=payment_id,
        )
        return await self._receipts.add(receipt)

    async def get(self, receipt_id: str) -> Receipt:
        receipt = await self._receipts.get(receipt_id)
        if receipt is None:
            raise ResourceNotFoundException("Receipt", receipt_id)
        return receipt

    async def verify(self, digest: str) -> Receipt:
        receipt = await self.lookup(digest)
        if receipt is None:
            raise ResourceNotFoundException(
                "Receipt",
                details={"fulfillmentHash": digest, "verified": False}
            )
        return receipt

    async def list_receipts(
        self,
        customer_id: Optional[str] = None,
        watcher_id: Optional[str] = None
    ) -> List[Receipt]:
        return await self._receipts.list(customer_id=customer_id, watcher_id=watcher_id)


class CustomerService:
    """Customer records and tier transitions."""

    def __init__(
        self,
        customers: CustomerRepository,
        payments: PaymentRepository,
        policy: Callable[[], MarketplacePolicy],
        clock: Callable[[], datetime] = utc_now,
    ):
        self._customers = customers
        self._payments = payments
        self._policy = policy
        self._clock = clock

    async def get(self, customer_id: str) -> Customer:
        customer = await self._customers.get(customer_id)
        if customer is None:
            raise ResourceNotFoundException("Customer", customer_id)
        return customer

    async def get_or_create(self, customer_id: str) -> Customer:
        """Resolve a customer, creating it on the free tier if unknown."""
        customer = await self._customers.get(customer_id)
        if customer is not None:
            return customer

        try:
            customer = await self._customers.add(
                Customer(id=customer_id, created_at=self._clock())
            )
        except ConflictException:
            # Created concurrently
            return await self.get(customer_id)

        logger.info("Customer created", extra={"customer_id": customer_id})
        return customer

    def check_free_capacity(self, customer: Customer) -> None:
        """
        Raises:
            TierLimitExceededException: free customer used its whole quota
        """
        free_tier = self._policy().free_tier
        if customer.is_free and not customer.has_free_capacity(free_tier.max_watchers):
            raise TierLimitExceededException(
                customer.id,
                customer.free_watchers_used,
                free_tier.max_watchers,
                free_tier.upgrade_prompt,
            )

    async def record_watcher_purchase(self, customer_id: str, price: Decimal) -> Customer:
        """
        Count a new watcher against the customer.

        The free quota is re-checked inside the atomic update so concurrent
        creations cannot both take the last slot.
        """
        def apply(entity: Customer) -> None:
            self.check_free_capacity(entity)
            if entity.is_free:
                entity.free_watchers_used += 1
            entity.stats.total_watchers_created += 1
            entity.stats.total_spent += price

        customer = await self._customers.modify(customer_id, apply)
        if customer is None:
            raise ResourceNotFoundException("Customer", customer_id)
        return customer

    async def upgrade(self, customer_id: str) -> Dict[str, Any]:
        """
        Move a customer from free to paid.

        Records an upgrade payment that goes entirely to the platform.

        Raises:
            ConflictException: customer is already on the paid tier
        """
        await self.get_or_create(customer_id)
        now = self._clock()
        price = self._policy().upgrade_price

        def apply(entity: Customer) -> None:
            if entity.tier == CustomerTier.PAID:
                raise ConflictException(
                    f"Customer '{customer_id}' is already on the paid tier",
                    {"customerId": customer_id, "tier": entity.tier}
                )
            entity.upgrade(now)
            entity.stats.total_spent += price

        customer = await self._customers.modify(customer_id, apply)

        payment = None
        if price > 0:
            payment = await self._payments.add(Payment(
                customer_id=customer_id,
                type=PaymentType.UPGRADE,
                amount=price,
                operator_share=Decimal("0"),
                platform_share=price,
                network=settings.payment_network,
                created_at=now,
            ))
        logger.info("Customer upgraded", extra={"customer_id": customer_id})

        return {"customer": customer, "payment": payment}


class MarketplaceService:
    """Operators, watcher types, discovery and platform stats."""

    def __init__(
        self,
        operators: OperatorRepository,
        watcher_types: WatcherTypeRepository,
        payments: PaymentRepository,
        executors: ExecutorRegistry,
        policy: Callable[[], MarketplacePolicy],
        clock: Callable[[], datetime] = utc_now,
    ):
        self._operators = operators
        self._watcher_types = watcher_types
        self._payments = payments
        self._executors = executors
        self._policy = policy
        self._clock = clock

    # ========== Discovery ==========

    def info(self) -> Dict[str, Any]:
        policy = self._policy()
        return {
            "service": f"{settings.app_name} marketplace",
            "version": settings.app_version,
            "description": "Agent services marketplace - watchers, alerts, automations",
            "categories": WATCHER_CATEGORIES,
            "builtInExecutors": self._executors.ids(),
            "fees": {
                "platform": f"{float(policy.platform_fee * 100):g}%",
                "operator": f"{float(policy.operator_share * 100):g}%",
            },
            "freeTier": {
                "available": True,
                "maxWatchers": policy.free_tier.max_watchers,
                "pollingIntervalMin": policy.free_tier.min_polling_interval,
                "upgradeInfo": policy.free_tier.upgrade_prompt,
            },
            "polling": {
                "intervals": policy.polling_intervals,
                "ttlOptions": policy.ttl_options + [None],
                "maxRetriesLimit": policy.retry.max_retries_limit,
            },
        }

    # ========== Operators ==========

    async def list_operators(self) -> List[Operator]:
        return await self._operators.list()

    async def get_operator(self, operator_id: str) -> Operator:
        operator = await self._operators.get(operator_id)
        if operator is None:
            raise ResourceNotFoundException("Operator", operator_id)
        return operator

    async def register_operator(self, request: RegisterOperatorRequest) -> Operator:
        """
        Register an operator.

        Raises:
            InvalidConfigException: bad name or wallet
            ConflictException: wallet already registered
        """
        name = request.name.strip() if isinstance(request.name, str) else ""
        if len(name) < 2:
            raise InvalidConfigException("name", "Name is required (min 2 chars)")

        wallet = request.wallet
        if not isinstance(wallet, str) or not WALLET_PATTERN.match(wallet):
            raise InvalidConfigException("wallet", "Valid wallet address required (0x + 40 hex chars)")

        existing = await self._operators.get_by_wallet(wallet)
        if existing is not None:
            raise ConflictException(
                "Wallet already registered",
                {"operatorId": existing.id}
            )

        operator = await self._operators.add(Operator(
            name=name,
            wallet=wallet.lower(),
            description=request.description or "",
            website=request.website or None,
            created_at=self._clock(),
        ))
        logger.info("Operator registered", extra={"operator_id": operator.id})
        return operator

    # ========== Watcher Types ==========

    async def list_types(
        self,
        category: Optional[str] = None,
        operator_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Active watcher types with their operator's name."""
        types = await self._watcher_types.list(
            category=category,
            operator_id=operator_id,
            status=WatcherTypeStatus.ACTIVE,
        )
        operators = {o.id: o for o in await self._operators.list()}

        enriched = []
        for watcher_type in types:
            document = watcher_type.to_document()
            operator = operators.get(watcher_type.operator_id)
            document["operator"] = operator.name if operator else "Unknown"
            enriched.append(document)
        return enriched

    async def get_type(self, type_id: str) -> WatcherType:
        watcher_type = await self._watcher_types.get(type_id)
        if watcher_type is None:
            raise ResourceNotFoundException("WatcherType", type_id)
        return watcher_type

    async def describe_type(self, type_id: str) -> Dict[str, Any]:
        watcher_type = await self.get_type(type_id)
        operator = await self._operators.get(watcher_type.operator_id)

        document = watcher_type.to_document()
        document["operator"] = (
            {
                "id": operator.id,
                "name": operator.name,
                "stats": operator.stats.to_document(),
            }
            if operator else None
        )
        return document

    async def create_type(self, request: CreateWatcherTypeRequest) -> WatcherType:
        """
        Create a watcher type for an existing operator.

        Raises:
            ResourceNotFoundException: unknown operator
            InvalidConfigException: bad name, category, price or executor
        """
        if not request.operator_id:
            raise InvalidConfigException("operatorId", "operatorId is required")
        operator = await self.get_operator(request.operator_id)

        name = request.name.strip() if isinstance(request.name, str) else ""
        if len(name) < 3:
            raise InvalidConfigException("name", "Name required (min 3 chars)")

        if request.category not in WATCHER_CATEGORIES:
            raise InvalidConfigException(
                "category",
                f"Invalid category. Must be one of: {', '.join(WATCHER_CATEGORIES)}",
                allowed=WATCHER_CATEGORIES
            )

        min_price = self._policy().min_type_price
        price = self._parse_price(request.price)
        if price is None or price < min_price:
            raise InvalidConfigException("price", f"Price must be at least ${min_price}")

        if request.executor_id and request.executor_id not in self._executors:
            raise InvalidConfigException(
                "executorId",
                f"Unknown executor. Available: {', '.join(self._executors.ids())}",
                allowed=self._executors.ids()
            )

        watcher_type = await self._watcher_types.add(WatcherType(
            operator_id=operator.id,
            name=name,
            category=request.category,
            description=request.description or "",
            price=price,
            executor_id=request.executor_id or None,
            config_schema=request.config_schema,
            created_at=self._clock(),
        ))
        logger.info(
            "Watcher type created",
            extra={"type_id": watcher_type.id, "operator_id": operator.id}
        )
        return watcher_type

    @staticmethod
    def _parse_price(value: Any) -> Optional[Decimal]:
        if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
            return None
        try:
            price = Decimal(str(value))
        except InvalidOperation:
            return None
        return price if price.is_finite() else None

    def operator_payout(self, price: Decimal) -> Decimal:
        operator_share, _ = self._policy().revenue_split.split(price)
        return operator_share

    # ========== Stats ==========

    async def stats(self, watchers: List[Any]) -> Dict[str, Any]:
        """Platform totals; ``watchers`` comes from the watcher repository."""
        operators = await self._operators.count()
        types = await self._watcher_types.count()
        payments = await self._payments.list()

        total_revenue = sum((p.amount for p in payments), Decimal("0"))
        platform_revenue = sum((p.platform_share for p in payments), Decimal("0"))

        return {
            "operators": operators,
            "watcherTypes": types,
            "activeWatchers": sum(1 for w in watchers if w.status == WatcherStatus.ACTIVE),
            "totalWatchers": len(watchers),
            "totalPayments": len(payments),
            "totalRevenue": f"${total_revenue:.4f}",
            "platformRevenue": f"${platform_revenue:.4f}",
        }
