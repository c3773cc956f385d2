"""
Built-in Executors
==================

- ``wallet-balance``: native balance via JSON-RPC ``eth_getBalance``
- ``token-price``: USD spot price via the CoinGecko simple price API

Both compare the observed value with ``threshold`` in ``direction``
(``above`` / ``below``).
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import httpx

from src.config import settings
from src.core.exceptions import ExecutorException
from src.infrastructure.executors.base import CheckResult, Executor, ValidationResult
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")
DIRECTIONS = ["above", "below"]
WEI_PER_ETH = Decimal(10) ** 18

# Common symbols to CoinGecko ids; anything else is used as an id directly
COINGECKO_IDS = {
    "ETH": "ethereum",
    "BTC": "bitcoin",
    "USDC": "usd-coin",
    "USDT": "tether",
    "SOL": "solana",
    "OP": "optimism",
    "ARB": "arbitrum",
    "MATIC": "matic-network",
    "DAI": "dai",
}


def _threshold_errors(config: Dict[str, Any]) -> List[str]:
    errors = []
    threshold = config.get("threshold")
    if isinstance(threshold, bool) or not isinstance(threshold, (int, float)):
        errors.append("threshold must be a number")
    elif threshold < 0:
        errors.append("threshold must be >= 0")

    if config.get("direction") not in DIRECTIONS:
        errors.append(f"direction must be one of: {', '.join(DIRECTIONS)}")
    return errors


def _crossed(value: Decimal, threshold: Any, direction: str) -> bool:
    limit = Decimal(str(threshold))
    if direction == "above":
        return value > limit
    return value < limit


class _HTTPExecutor(Executor):
    """Executor backed by a shared ``httpx.AsyncClient``."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._http_client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=settings.executor_timeout_seconds)
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None


class WalletBalanceExecutor(_HTTPExecutor):
    """Watch a wallet's native balance on an EVM chain."""

    executor_id = "wallet-balance"
    description = "Native wallet balance above/below a threshold (base, ethereum, optimism, arbitrum)"

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        rpc_urls: Optional[Dict[str, str]] = None
    ):
        super().__init__(client)
        self.rpc_urls = rpc_urls or dict(settings.rpc_urls)

    def validate(self, config: Any) -> ValidationResult:
        if not isinstance(config, dict):
            return ValidationResult(valid=False, errors=["config must be an object"])

        errors = []
        address = config.get("address")
        if not isinstance(address, str) or not ADDRESS_PATTERN.match(address):
            errors.append("address must be a 0x-prefixed 40-hex-char wallet address")

        chain = config.get("chain", "base")
        if chain not in self.rpc_urls:
            errors.append(f"chain must be one of: {', '.join(self.rpc_urls)}")

        errors.extend(_threshold_errors(config))
        return ValidationResult(valid=not errors, errors=errors)

    async def check(self, config: Any) -> CheckResult:
        chain = config.get("chain", "base")
        rpc_url = self.rpc_urls.get(chain)
        if rpc_url is None:
            raise ExecutorException(self.executor_id, f"unsupported chain '{chain}'")

        client = await self._get_client()
        response = await client.post(
            rpc_url,
            json={
                "jsonrpc": "2.0",
                "id": 1,
                "method": "eth_getBalance",
                "params": [config["address"], "latest"],
            }
        )
        response.raise_for_status()
        body = response.json()

        if "error" in body:
            raise ExecutorException(
                self.executor_id,
                f"RPC error: {body['error'].get('message', body['error'])}"
            )

        balance = Decimal(int(body["result"], 16)) / WEI_PER_ETH
        triggered = _crossed(balance, config["threshold"], config["direction"])

        return CheckResult(
            triggered=triggered,
            data={
                "address": config["address"],
                "chain": chain,
                "balance": float(balance),
                "threshold": config["threshold"],
                "direction": config["direction"],
            }
        )


class TokenPriceExecutor(_HTTPExecutor):
    """Watch a token's USD price."""

    executor_id = "token-price"
    description = "Token USD price above/below a threshold (CoinGecko)"

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        base_url: Optional[str] = None
    ):
        super().__init__(client)
        self.base_url = (base_url or settings.coingecko_base_url).rstrip("/")

    @staticmethod
    def coin_id(token: str) -> str:
        return COINGECKO_IDS.get(token.upper(), token.lower())

    def validate(self, config: Any) -> ValidationResult:
        if not isinstance(config, dict):
            return ValidationResult(valid=False, errors=["config must be an object"])

        errors = []
        token = config.get("token")
        if not isinstance(token, str) or not token.strip():
            errors.append("token must be a symbol (ETH, BTC, ...) or CoinGecko id")

        errors.extend(_threshold_errors(config))
        return ValidationResult(valid=not errors, errors=errors)

    async def check(self, config: Any) -> CheckResult:
        coin = self.coin_id(config["token"])

        client = await self._get_client()
        response = await client.get(
            f"{self.base_url}/simple/price",
            params={"ids": coin, "vs_currencies": "usd"}
        )
        response.raise_for_status()
        body = response.json()

        try:
            price = Decimal(str(body[coin]["usd"]))
        except (KeyError, TypeError, InvalidOperation):
            raise ExecutorException(self.executor_id, f"no USD price for '{coin}'")

        triggered = _crossed(price, config["threshold"], config["direction"])

        return CheckResult(
            triggered=triggered,
            data={
                "token": config["token"],
                "coinId": coin,
                "price": float(price),
                "threshold": config["threshold"],
                "direction": config["direction"],
            }
        )
