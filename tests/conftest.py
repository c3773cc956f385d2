"""
Pytest configuration and shared fixtures for the Sentinel marketplace tests.

Every test gets its own SQLite document store, a controllable clock, stub
executors and a mocked webhook transport, so nothing touches the network.
"""

import os
import tempfile
import uuid as _uuid

# Set testing environment BEFORE importing the app
_test_dir = tempfile.mkdtemp(prefix="sentinel_test_")
os.environ["ENVIRONMENT"] = "testing"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_test_dir}/sentinel_{_uuid.uuid4().hex[:8]}.db"
os.environ["MARKETPLACE_CONFIG_PATH"] = os.path.join(_test_dir, "missing_policy.yaml")
os.environ["CHECK_INTERVAL_SECONDS"] = "0"
os.environ["BILLING_INTERVAL_SECONDS"] = "0"
os.environ.pop("CRON_SECRET", None)
os.environ.pop("GRAFANA_HOST", None)

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, List, Optional

import httpx
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from src.container import ServiceContainer
from src.infrastructure.database import Base
from src.infrastructure.documents import SQLAlchemyDocumentStore
from src.infrastructure.executors import CheckResult, Executor, ExecutorRegistry, ValidationResult
from src.marketplace.application import CreateWatcherTypeRequest, RegisterOperatorRequest
from src.marketplace.domain import MarketplacePolicy, Operator, WatcherType
from src.marketplace.infrastructure import PolicyConfigManager
from src.watchers.application.billing import ChargeResult, IPaymentRail
from src.watchers.application.dto import CreateWatcherRequest
from src.watchers.infrastructure.external import WebhookClient


START = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
OPERATOR_WALLET = "0x" + "ab" * 20


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------

class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class SleepRecorder:
    """Stands in for asyncio.sleep and records requested delays."""

    def __init__(self):
        self.calls: List[float] = []
        self.during_sleep: Optional[Callable[[], Awaitable[None]]] = None

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.during_sleep is not None:
            await self.during_sleep()


class StubExecutor(Executor):
    """Executor whose outcome is set by the test."""

    executor_id = "stub"
    description = "Test executor"

    def __init__(self):
        self.triggered = False
        self.error: Optional[Exception] = None
        self.calls: List[Any] = []
        # Awaited mid-check, e.g. to cancel the watcher while it runs
        self.during_check: Optional[Callable[[], Awaitable[None]]] = None

    async def check(self, config: Any) -> CheckResult:
        self.calls.append(config)
        if self.during_check is not None:
            await self.during_check()
        if self.error is not None:
            raise self.error
        return CheckResult(triggered=self.triggered, data={"value": 42})

    def validate(self, config: Any) -> ValidationResult:
        if not isinstance(config, dict):
            return ValidationResult(valid=False, errors=["config must be an object"])
        if "reject" in config:
            return ValidationResult(valid=False, errors=["reject is not allowed"])
        return ValidationResult(valid=True)


class WebhookRecorder:
    """httpx.MockTransport handler answering with queued status codes."""

    def __init__(self):
        self.statuses: List[int] = []
        self.default_status = 200
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self.statuses.pop(0) if self.statuses else self.default_status
        return httpx.Response(status, json={"ok": status < 400})


class ScriptedPaymentRail(IPaymentRail):
    """Payment rail returning queued outcomes (approve by default)."""

    name = "scripted"

    def __init__(self):
        self.outcomes: List[Any] = []
        self.charges: List[Decimal] = []
        self.during_charge: Optional[Callable[[Any], Awaitable[None]]] = None

    async def charge(self, watcher, amount: Decimal) -> ChargeResult:
        self.charges.append(amount)
        if self.during_charge is not None:
            await self.during_charge(watcher)
        outcome = self.outcomes.pop(0) if self.outcomes else True
        if isinstance(outcome, Exception):
            raise outcome
        if outcome:
            return ChargeResult(success=True, tx_hash="0xtest")
        return ChargeResult(success=False, failure_reason="Payment declined")


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

def make_watcher_request(type_id: str, **overrides) -> CreateWatcherRequest:
    """Factory for creation bodies; overrides use snake_case field names."""
    defaults = dict(
        type_id=type_id,
        config={"target": "ETH"},
        webhook="https://hooks.example.com/alert",
        customer_id="cust-1",
    )
    defaults.update(overrides)
    return CreateWatcherRequest(**defaults)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
async def store(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield SQLAlchemyDocumentStore(async_sessionmaker(engine, expire_on_commit=False))
    await engine.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def stub_executor() -> StubExecutor:
    return StubExecutor()


@pytest.fixture
def webhook_recorder() -> WebhookRecorder:
    return WebhookRecorder()


@pytest.fixture
def payment_rail() -> ScriptedPaymentRail:
    return ScriptedPaymentRail()


@pytest.fixture
def policy() -> MarketplacePolicy:
    return MarketplacePolicy()


@pytest.fixture
async def container(store, clock, sleeps, stub_executor, webhook_recorder, payment_rail, policy):
    registry = ExecutorRegistry()
    registry.register(stub_executor)

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(webhook_recorder))
    container = ServiceContainer(
        store,
        policy_manager=PolicyConfigManager(policy),
        executors=registry,
        webhooks=WebhookClient(client=http_client, sleep=sleeps),
        payment_rail=payment_rail,
        clock=clock,
        sleep=sleeps,
    )
    yield container
    await container.close()
    await http_client.aclose()


@pytest.fixture
async def operator(container) -> Operator:
    return await container.marketplace.register_operator(
        RegisterOperatorRequest(name="Acme Watchers", wallet=OPERATOR_WALLET)
    )


@pytest.fixture
async def watcher_type(container, operator) -> WatcherType:
    return await container.marketplace.create_type(CreateWatcherTypeRequest(
        operator_id=operator.id,
        name="Stub Alert",
        category="custom",
        price="0.10",
        executor_id="stub",
    ))


@pytest.fixture
async def paid_customer(container) -> str:
    await container.customer_service.upgrade("cust-1")
    return "cust-1"
