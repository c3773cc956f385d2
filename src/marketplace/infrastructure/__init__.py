"""
Marketplace Infrastructure Layer
================================

- Repositories: typed document collections
- External: policy file loader with hot-reload
"""

from src.marketplace.infrastructure.external import PolicyConfigManager
from src.marketplace.infrastructure.repositories import (
    CustomerRepository,
    OperatorRepository,
    PaymentRepository,
    ReceiptRepository,
    WatcherTypeRepository,
)

__all__ = [
    "PolicyConfigManager",
    "CustomerRepository",
    "OperatorRepository",
    "PaymentRepository",
    "ReceiptRepository",
    "WatcherTypeRepository",
]
