"""
Unit tests for operators, watcher types, customers, receipts, seeding and
the policy file loader.
"""

from decimal import Decimal

import pytest

from src.config import CustomerTier, PaymentType
from src.container import ServiceContainer
from src.core.exceptions import (
    ConfigurationException,
    ConflictException,
    InvalidConfigException,
    ResourceNotFoundException,
)
from src.marketplace.application import (
    CreateWatcherTypeRequest,
    RegisterOperatorRequest,
    seed_marketplace,
)
from src.marketplace.domain import MarketplacePolicy
from src.marketplace.infrastructure import PolicyConfigManager
from tests.conftest import OPERATOR_WALLET, make_watcher_request


def make_type_request(operator_id: str, **overrides) -> CreateWatcherTypeRequest:
    defaults = dict(operator_id=operator_id, name="Gas Alert", category="custom", price="0.05")
    defaults.update(overrides)
    return CreateWatcherTypeRequest(**defaults)


class TestOperators:
    async def test_wallet_is_normalized(self, container):
        operator = await container.marketplace.register_operator(
            RegisterOperatorRequest(name="  Acme  ", wallet="0x" + "AB" * 20)
        )
        assert operator.name == "Acme"
        assert operator.wallet == "0x" + "ab" * 20

    async def test_duplicate_wallet_conflicts(self, container, operator):
        with pytest.raises(ConflictException) as exc_info:
            await container.marketplace.register_operator(
                RegisterOperatorRequest(name="Copycat", wallet=OPERATOR_WALLET.upper().replace("0X", "0x"))
            )
        assert exc_info.value.details["operatorId"] == operator.id

    @pytest.mark.parametrize("name, wallet, field", [
        ("A", OPERATOR_WALLET, "name"),
        (None, OPERATOR_WALLET, "name"),
        ("Acme", "0x1234", "wallet"),
        ("Acme", "ab" * 21, "wallet"),
    ])
    async def test_invalid_registration(self, container, name, wallet, field):
        with pytest.raises(InvalidConfigException) as exc_info:
            await container.marketplace.register_operator(RegisterOperatorRequest(name=name, wallet=wallet))
        assert exc_info.value.field == field


class TestWatcherTypes:
    async def test_create_and_describe(self, container, operator):
        watcher_type = await container.marketplace.create_type(make_type_request(operator.id))

        assert watcher_type.price == Decimal("0.05")
        assert container.marketplace.operator_payout(watcher_type.price) == Decimal("0.04")

        document = await container.marketplace.describe_type(watcher_type.id)
        assert document["operator"]["name"] == "Acme Watchers"
        assert document["price"] == "0.05"

    async def test_unknown_operator(self, container):
        with pytest.raises(ResourceNotFoundException):
            await container.marketplace.create_type(make_type_request("missing"))

    @pytest.mark.parametrize("overrides, field", [
        ({"name": "ab"}, "name"),
        ({"category": "weather"}, "category"),
        ({"price": "0.0005"}, "price"),
        ({"price": "abc"}, "price"),
        ({"price": True}, "price"),
        ({"price": "NaN"}, "price"),
        ({"executor_id": "teleport"}, "executorId"),
    ])
    async def test_invalid_type(self, container, operator, overrides, field):
        with pytest.raises(InvalidConfigException) as exc_info:
            await container.marketplace.create_type(make_type_request(operator.id, **overrides))
        assert exc_info.value.field == field

    async def test_list_filters_and_enriches(self, container, operator):
        await container.marketplace.create_type(make_type_request(operator.id, category="wallet"))
        await container.marketplace.create_type(make_type_request(operator.id, name="Price Feed", category="price"))

        price_types = await container.marketplace.list_types(category="price")
        assert [t["name"] for t in price_types] == ["Price Feed"]
        assert price_types[0]["operator"] == "Acme Watchers"

        assert len(await container.marketplace.list_types(operator_id=operator.id)) == 2
        assert await container.marketplace.list_types(operator_id="someone-else") == []


class TestCustomers:
    async def test_upgrade_records_platform_payment(self, container, clock):
        result = await container.customer_service.upgrade("cust-9")

        customer = result["customer"]
        assert customer.tier == CustomerTier.PAID
        assert customer.upgraded_at == clock.now

        payment = result["payment"]
        assert payment.type == PaymentType.UPGRADE
        assert payment.amount == Decimal("1.00")
        assert payment.operator_share == Decimal("0")
        assert payment.platform_share == Decimal("1.00")
        assert payment.watcher_id is None

    async def test_second_upgrade_conflicts(self, container):
        await container.customer_service.upgrade("cust-9")
        with pytest.raises(ConflictException):
            await container.customer_service.upgrade("cust-9")
        assert len(await container.payments.list(customer_id="cust-9")) == 1

    async def test_unknown_customer(self, container):
        with pytest.raises(ResourceNotFoundException):
            await container.customer_service.get("nobody")


class TestReceipts:
    async def test_verify_and_list(self, container, watcher_type):
        created = await container.lifecycle.create_watcher(make_watcher_request(watcher_type.id))
        digest = created.receipt.fulfillment_hash

        receipt = await container.receipt_service.verify(digest)
        assert receipt.id == created.receipt.id
        assert receipt.chain == "eip155:8453"
        assert receipt.rail == "x402"

        assert len(await container.receipt_service.list_receipts(customer_id="cust-1")) == 1
        assert await container.receipt_service.list_receipts(watcher_id="other") == []

    async def test_unknown_hash(self, container):
        with pytest.raises(ResourceNotFoundException) as exc_info:
            await container.receipt_service.verify("0" * 32)
        assert exc_info.value.details["verified"] is False


class TestDiscovery:
    async def test_info(self, container):
        info = container.marketplace.info()
        assert info["fees"] == {"platform": "20%", "operator": "80%"}
        assert info["freeTier"]["maxWatchers"] == 1
        assert info["polling"]["ttlOptions"] == [24, 72, 168, None]
        assert info["builtInExecutors"] == ["stub"]

    async def test_stats(self, container, watcher_type, paid_customer):
        await container.lifecycle.create_watcher(make_watcher_request(watcher_type.id))

        stats = await container.marketplace.stats(await container.lifecycle.all_watchers())
        assert stats["operators"] == 1
        assert stats["watcherTypes"] == 1
        assert stats["activeWatchers"] == 1
        assert stats["totalPayments"] == 2
        assert stats["totalRevenue"] == "$1.1000"
        assert stats["platformRevenue"] == "$1.0200"


class TestSeed:
    async def test_seed_is_idempotent(self, store):
        container = ServiceContainer(store)
        try:
            created = await seed_marketplace(container.marketplace)
            assert [t.executor_id for t in created] == ["wallet-balance", "token-price"]
            assert [t.name for t in created] == ["Wallet Balance Alert", "Token Price Alert"]

            assert await seed_marketplace(container.marketplace) == []
            assert len(await container.marketplace.list_operators()) == 1
        finally:
            await container.close()


class TestPolicyConfigManager:
    """YAML policy loading and hot reload."""

    def test_missing_file_uses_defaults(self, tmp_path):
        manager = PolicyConfigManager()
        policy = manager.load(tmp_path / "absent.yaml")
        assert policy == MarketplacePolicy()

    def test_loads_and_sorts_options(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text(
            "polling_intervals: [60, 10, 10]\n"
            "operator_share: '0.75'\n"
            "free_tier:\n"
            "  max_watchers: 3\n"
        )
        policy = PolicyConfigManager().load(path)
        assert policy.polling_intervals == [10, 60]
        assert policy.revenue_split.split(Decimal("1")) == (Decimal("0.75"), Decimal("0.25"))
        assert policy.free_tier.max_watchers == 3

    def test_invalid_file_at_startup(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text("polling_intervals: [-5]\n")
        with pytest.raises(ConfigurationException):
            PolicyConfigManager().load(path)

    def test_broken_reload_keeps_previous_policy(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text("batch_max_items: 10\n")
        manager = PolicyConfigManager()
        manager.load(path)

        path.write_text("batch_max_items: [not, a, number\n")
        assert manager.reload() is False
        assert manager.policy.batch_max_items == 10

        path.write_text("batch_max_items: 20\n")
        assert manager.reload() is True
        assert manager.policy.batch_max_items == 20
