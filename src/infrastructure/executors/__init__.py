"""
Watcher Executors
=================

Pluggable check implementations and the registry that resolves them.
"""

from typing import Optional

import httpx

from src.infrastructure.executors.base import (
    CheckResult,
    Executor,
    ExecutorRegistry,
    ValidationResult,
)
from src.infrastructure.executors.builtin import TokenPriceExecutor, WalletBalanceExecutor


def create_default_registry(client: Optional[httpx.AsyncClient] = None) -> ExecutorRegistry:
    """Registry holding the built-in executors."""
    registry = ExecutorRegistry()
    registry.register(WalletBalanceExecutor(client=client))
    registry.register(TokenPriceExecutor(client=client))
    return registry


__all__ = [
    "CheckResult",
    "Executor",
    "ExecutorRegistry",
    "ValidationResult",
    "TokenPriceExecutor",
    "WalletBalanceExecutor",
    "create_default_registry",
]
