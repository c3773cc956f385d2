"""
Watcher Infrastructure Repositories
===================================

Typed document repositories for watchers and SLA violations.
"""

from typing import List, Optional

from src.config import WatcherStatus
from src.infrastructure.documents import DocumentRepository
from src.watchers.domain import SLAViolation, Watcher


class WatcherRepository(DocumentRepository[Watcher]):
    collection = "watchers"
    model = Watcher

    async def list_active(self) -> List[Watcher]:
        return await self.list(status=WatcherStatus.ACTIVE)

    async def list_by_customer(self, customer_id: Optional[str] = None) -> List[Watcher]:
        return await self.list(customer_id=customer_id)


class SLAViolationRepository(DocumentRepository[SLAViolation]):
    collection = "sla-violations"
    model = SLAViolation
