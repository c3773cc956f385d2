"""
Service Container
=================

Builds the repositories and services once per process and hands them to
the API through ``app.state.container``.
"""

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Optional

import httpx
from fastapi import Request

from src.config import settings
from src.core.models import utc_now
from src.core.store import IDocumentStore
from src.infrastructure.executors import ExecutorRegistry, create_default_registry
from src.marketplace.application import CustomerService, MarketplaceService, ReceiptService
from src.marketplace.domain import MarketplacePolicy
from src.marketplace.infrastructure import (
    CustomerRepository,
    OperatorRepository,
    PaymentRepository,
    PolicyConfigManager,
    ReceiptRepository,
    WatcherTypeRepository,
)
from src.watchers.application.billing import BillingService, IPaymentRail
from src.watchers.application.checks import CheckService
from src.watchers.application.services import WatcherLifecycleService
from src.watchers.application.sla import SLAService
from src.watchers.infrastructure.external import SimulatedPaymentRail, WebhookClient
from src.watchers.infrastructure.repositories import SLAViolationRepository, WatcherRepository


class ServiceContainer:
    """Process-wide wiring of stores, repositories and services."""

    def __init__(
        self,
        store: IDocumentStore,
        policy_manager: Optional[PolicyConfigManager] = None,
        executors: Optional[ExecutorRegistry] = None,
        webhooks: Optional[WebhookClient] = None,
        payment_rail: Optional[IPaymentRail] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.policy_manager = policy_manager or PolicyConfigManager(MarketplacePolicy())
        self.executors = executors or create_default_registry(client=http_client)
        self.webhooks = webhooks or WebhookClient(client=http_client, sleep=sleep)
        self.payment_rail = payment_rail or SimulatedPaymentRail()

        # Repositories
        self.operators = OperatorRepository(store)
        self.watcher_types = WatcherTypeRepository(store)
        self.customers = CustomerRepository(store)
        self.payments = PaymentRepository(store)
        self.receipts = ReceiptRepository(store)
        self.watchers = WatcherRepository(store)
        self.violations = SLAViolationRepository(store)

        # Services
        self.receipt_service = ReceiptService(self.receipts)
        self.customer_service = CustomerService(
            self.customers, self.payments, self.get_policy, clock
        )
        self.marketplace = MarketplaceService(
            self.operators, self.watcher_types, self.payments, self.executors,
            self.get_policy, clock
        )
        self.lifecycle = WatcherLifecycleService(
            self.watchers,
            self.watcher_types,
            self.operators,
            self.payments,
            self.customer_service,
            self.receipt_service,
            self.executors,
            self.get_policy,
            clock,
            sleep,
        )
        self.sla = SLAService(
            self.watchers, self.violations, self.payments, self.get_policy, clock
        )
        self.checks = CheckService(
            self.watchers,
            self.watcher_types,
            self.operators,
            self.executors,
            self.webhooks,
            self.sla,
            clock,
            settings.executor_timeout_seconds,
        )
        self.billing = BillingService(
            self.watchers,
            self.watcher_types,
            self.operators,
            self.customers,
            self.payments,
            self.payment_rail,
            self.get_policy,
            clock,
        )

    def get_policy(self) -> MarketplacePolicy:
        return self.policy_manager.policy

    async def close(self) -> None:
        """Release HTTP clients and stop the policy file watcher."""
        self.policy_manager.stop_watching()
        await self.webhooks.close()
        await self.executors.close()


def get_container(request: Request) -> ServiceContainer:
    """FastAPI dependency resolving the application's container."""
    return request.app.state.container
