"""
Marketplace Infrastructure Repositories
=======================================

Typed document repositories for the marketplace collections.
"""

from datetime import datetime
from typing import List, Optional

from src.infrastructure.documents import DocumentRepository
from src.marketplace.domain import Customer, Operator, Payment, Receipt, WatcherType


class OperatorRepository(DocumentRepository[Operator]):
    collection = "operators"
    model = Operator

    async def get_by_wallet(self, wallet: str) -> Optional[Operator]:
        matches = await self.list(wallet=wallet.lower())
        return matches[0] if matches else None


class WatcherTypeRepository(DocumentRepository[WatcherType]):
    collection = "watcher-types"
    model = WatcherType


class CustomerRepository(DocumentRepository[Customer]):
    collection = "customers"
    model = Customer


class PaymentRepository(DocumentRepository[Payment]):
    """Append-only payment ledger."""

    collection = "payments"
    model = Payment

    async def list_since(self, watcher_id: str, since: datetime) -> List[Payment]:
        payments = await self.list(watcher_id=watcher_id)
        return [p for p in payments if p.created_at >= since]


class ReceiptRepository(DocumentRepository[Receipt]):
    collection = "receipts"
    model = Receipt

    async def get_by_hash(self, fulfillment_hash: str) -> Optional[Receipt]:
        matches = await self.list(fulfillment_hash=fulfillment_hash)
        return matches[0] if matches else None
