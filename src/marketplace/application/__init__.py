"""
Marketplace Application Layer
=============================

Contains:
- Services: receipts, customers, operators and watcher types
- DTOs: request bodies for the marketplace API
- Seed: platform operator and built-in watcher types
"""

from src.marketplace.application.dto import CreateWatcherTypeRequest, RegisterOperatorRequest
from src.marketplace.application.services import (
    CustomerService,
    MarketplaceService,
    ReceiptService,
)
from src.marketplace.application.seed import seed_marketplace

__all__ = [
    # DTOs
    "CreateWatcherTypeRequest",
    "RegisterOperatorRequest",
    # Services
    "CustomerService",
    "MarketplaceService",
    "ReceiptService",
    # Seed
    "seed_marketplace",
]
