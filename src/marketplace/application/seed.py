"""
Marketplace Seed
================

Registers the platform operator and the watcher types backed by the
built-in executors. Skipped when any operator already exists.
"""

from typing import List, Optional

from src.config import settings
from src.marketplace.application.dto import CreateWatcherTypeRequest, RegisterOperatorRequest
from src.marketplace.application.services import MarketplaceService
from src.marketplace.domain import WatcherType
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

PLATFORM_OPERATOR = {
    "name": "Sentinel",
    "description": "Platform operator. Built-in watchers for wallet balances and token prices.",
    "website": None,
}

BUILTIN_TYPES = [
    {
        "name": "Wallet Balance Alert",
        "category": "wallet",
        "description": (
            "Get notified when a wallet balance goes above or below a threshold. "
            "Supports Base, Ethereum, Optimism, and Arbitrum."
        ),
        "price": "0.01",
        "executorId": "wallet-balance",
        "configSchema": {
            "type": "object",
            "required": ["address", "threshold", "direction"],
            "properties": {
                "address": {"type": "string", "description": "Wallet address (0x...)"},
                "threshold": {"type": "number", "description": "Balance threshold in ETH"},
                "direction": {"type": "string", "enum": ["above", "below"]},
                "chain": {
                    "type": "string",
                    "enum": ["base", "ethereum", "optimism", "arbitrum"],
                    "default": "base",
                },
            },
        },
    },
    {
        "name": "Token Price Alert",
        "category": "price",
        "description": (
            "Get notified when a token price crosses a threshold. "
            "Uses CoinGecko for price data."
        ),
        "price": "0.01",
        "executorId": "token-price",
        "configSchema": {
            "type": "object",
            "required": ["token", "threshold", "direction"],
            "properties": {
                "token": {"type": "string", "description": "Token symbol (ETH, BTC, etc.) or CoinGecko ID"},
                "threshold": {"type": "number", "description": "Price threshold in USD"},
                "direction": {"type": "string", "enum": ["above", "below"]},
            },
        },
    },
]


async def seed_marketplace(
    marketplace: MarketplaceService,
    wallet: Optional[str] = None
) -> List[WatcherType]:
    """
    Seed an empty marketplace.

    Returns:
        The created watcher types; empty when the marketplace already had
        operators
    """
    existing = await marketplace.list_operators()
    if existing:
        logger.info(
            "Marketplace already seeded",
            extra={"operators": [o.name for o in existing]}
        )
        return []

    operator = await marketplace.register_operator(RegisterOperatorRequest(
        wallet=wallet or settings.platform_wallet,
        **PLATFORM_OPERATOR,
    ))

    created = []
    for definition in BUILTIN_TYPES:
        request = CreateWatcherTypeRequest.model_validate({"operatorId": operator.id, **definition})
        created.append(await marketplace.create_type(request))

    logger.info(
        "Marketplace seeded",
        extra={"operator_id": operator.id, "types": [t.name for t in created]}
    )
    return created
