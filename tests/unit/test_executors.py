"""
Unit tests for the built-in executors, using httpx.MockTransport in place of
the JSON-RPC node and the CoinGecko API.
"""

import json

import httpx
import pytest

from src.core.exceptions import ExecutorException
from src.infrastructure.executors import (
    ExecutorRegistry,
    TokenPriceExecutor,
    WalletBalanceExecutor,
    create_default_registry,
)

ADDRESS = "0x" + "12" * 20


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestTokenPriceExecutor:
    async def test_price_above_threshold_triggers(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"ethereum": {"usd": 4100.5}})

        async with mock_client(handler) as client:
            executor = TokenPriceExecutor(client=client, base_url="https://prices.test/api/v3/")
            result = await executor.check({"token": "eth", "threshold": 4000, "direction": "above"})

        assert result.triggered
        assert result.data["price"] == 4100.5
        assert result.data["coinId"] == "ethereum"
        assert seen[0].url.path == "/api/v3/simple/price"
        assert seen[0].url.params["ids"] == "ethereum"
        assert seen[0].url.params["vs_currencies"] == "usd"

    async def test_unknown_symbol_is_used_as_coin_id(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"pepe": {"usd": 0.00001}})

        async with mock_client(handler) as client:
            executor = TokenPriceExecutor(client=client)
            result = await executor.check({"token": "PEPE", "threshold": 0.001, "direction": "below"})

        assert result.triggered

    async def test_missing_price_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={})

        async with mock_client(handler) as client:
            executor = TokenPriceExecutor(client=client)
            with pytest.raises(ExecutorException):
                await executor.check({"token": "ETH", "threshold": 1, "direction": "above"})

    async def test_http_error_propagates(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, json={"status": "rate limited"})

        async with mock_client(handler) as client:
            executor = TokenPriceExecutor(client=client)
            with pytest.raises(httpx.HTTPStatusError):
                await executor.check({"token": "ETH", "threshold": 1, "direction": "above"})

    @pytest.mark.parametrize("config, error", [
        ({"threshold": 1, "direction": "above"}, "token must be a symbol"),
        ({"token": "ETH", "threshold": "high", "direction": "above"}, "threshold must be a number"),
        ({"token": "ETH", "threshold": -1, "direction": "above"}, "threshold must be >= 0"),
        ({"token": "ETH", "threshold": 1, "direction": "sideways"}, "direction must be one of"),
    ])
    def test_validation_errors(self, config, error):
        validation = TokenPriceExecutor().validate(config)
        assert not validation.valid
        assert any(message.startswith(error) for message in validation.errors)

    def test_non_object_config(self):
        validation = TokenPriceExecutor().validate(["ETH"])
        assert validation.errors == ["config must be an object"]


class TestWalletBalanceExecutor:
    async def test_balance_below_threshold(self):
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            assert body["method"] == "eth_getBalance"
            assert body["params"] == [ADDRESS, "latest"]
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": hex(2 * 10 ** 18)})

        async with mock_client(handler) as client:
            executor = WalletBalanceExecutor(client=client, rpc_urls={"base": "https://rpc.test"})
            result = await executor.check({"address": ADDRESS, "threshold": 1, "direction": "below"})

        assert not result.triggered
        assert result.data["balance"] == 2.0
        assert result.data["chain"] == "base"

    async def test_rpc_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"error": {"code": -32000, "message": "header not found"}})

        async with mock_client(handler) as client:
            executor = WalletBalanceExecutor(client=client, rpc_urls={"base": "https://rpc.test"})
            with pytest.raises(ExecutorException) as exc_info:
                await executor.check({"address": ADDRESS, "threshold": 1, "direction": "above"})

        assert "header not found" in exc_info.value.message

    async def test_unsupported_chain_raises(self):
        executor = WalletBalanceExecutor(rpc_urls={"base": "https://rpc.test"})
        with pytest.raises(ExecutorException):
            await executor.check({"address": ADDRESS, "threshold": 1, "direction": "above", "chain": "solana"})

    def test_validation(self):
        executor = WalletBalanceExecutor(rpc_urls={"base": "https://rpc.test"})
        assert executor.validate({"address": ADDRESS, "threshold": 0.5, "direction": "above"}).valid

        validation = executor.validate({"address": "0x123", "threshold": 1, "direction": "up", "chain": "solana"})
        assert len(validation.errors) == 3


class TestExecutorRegistry:
    def test_default_registry(self):
        registry = create_default_registry()
        assert registry.ids() == ["wallet-balance", "token-price"]
        assert "token-price" in registry
        assert registry.get(None) is None
        assert registry.get("missing") is None

    def test_executor_needs_id(self):
        class Anonymous(TokenPriceExecutor):
            executor_id = ""

        with pytest.raises(ValueError):
            ExecutorRegistry().register(Anonymous())
