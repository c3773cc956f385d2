"""
Executor Contract
=================

An executor evaluates one watcher's opaque config against the outside world
and reports whether the watcher's condition fired.

Executors are looked up by id in an explicit ``ExecutorRegistry`` that is
populated at startup.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


@dataclass
class CheckResult:
    """Outcome of a single check."""
    triggered: bool
    data: Any = None


@dataclass
class ValidationResult:
    """Outcome of validating a watcher config."""
    valid: bool
    errors: List[str] = field(default_factory=list)


class Executor(ABC):
    """
    Base class for watcher executors.

    Subclasses implement ``check``; ``validate`` returns None when the
    executor has no validation capability.
    """

    executor_id: str = ""
    description: str = ""

    @abstractmethod
    async def check(self, config: Any) -> CheckResult:
        """Evaluate the config. Any exception counts as a failed check."""
        pass

    def validate(self, config: Any) -> Optional[ValidationResult]:
        return None

    async def close(self) -> None:
        pass


class ExecutorRegistry:
    """Explicit id -> executor mapping."""

    def __init__(self):
        self._executors: Dict[str, Executor] = {}

    def register(self, executor: Executor) -> Executor:
        if not executor.executor_id:
            raise ValueError("Executor must define executor_id")
        self._executors[executor.executor_id] = executor
        logger.debug("Executor registered", extra={"executor_id": executor.executor_id})
        return executor

    def get(self, executor_id: Optional[str]) -> Optional[Executor]:
        if not executor_id:
            return None
        return self._executors.get(executor_id)

    def ids(self) -> List[str]:
        return list(self._executors)

    def __contains__(self, executor_id: str) -> bool:
        return executor_id in self._executors

    async def close(self) -> None:
        for executor in self._executors.values():
            await executor.close()
