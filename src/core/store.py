"""
Document Store Interface
========================

Abstract persistence collaborator. Documents are JSON objects addressed by
(collection, id). Implementations must make ``mutate`` atomic: the read, the
caller's transformation and the write happen without any interleaving writer.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

Document = Dict[str, Any]


class IDocumentStore(ABC):
    """Persistence collaborator for JSON documents."""

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        """Fetch one document, or None."""
        pass

    @abstractmethod
    async def list(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None
    ) -> List[Document]:
        """List documents whose top-level keys equal every filter value."""
        pass

    @abstractmethod
    async def create(self, collection: str, doc_id: str, data: Document) -> Document:
        """Insert a new document. Raises ConflictException if the id exists."""
        pass

    @abstractmethod
    async def mutate(
        self,
        collection: str,
        doc_id: str,
        fn: Callable[[Document], Document]
    ) -> Optional[Document]:
        """Atomically apply ``fn`` to a document. Returns None if absent."""
        pass

    @abstractmethod
    async def count(self, collection: str) -> int:
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Remove every document (tests and seeding)."""
        pass
