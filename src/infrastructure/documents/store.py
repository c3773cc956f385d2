"""
SQLAlchemy Document Store
=========================

Concrete ``IDocumentStore`` on top of the async SQLAlchemy session maker.

All writes go through one ``asyncio.Lock``: the store is a single writer, so
``mutate`` (read, transform, write) is atomic for every caller in the
process and no increment is ever lost.
"""

import asyncio
import copy
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.exceptions import ConflictException, RepositoryException
from src.core.store import Document, IDocumentStore
from src.infrastructure.documents.models import DocumentModel
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


def _matches(data: Document, filters: Dict[str, Any]) -> bool:
    return all(data.get(key) == value for key, value in filters.items())


class SQLAlchemyDocumentStore(IDocumentStore):
    """
    Document store persisted in the ``documents`` table.

    Filtering happens in Python after selecting the collection; collections
    are small enough for that to be fine.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker
        self._write_lock = asyncio.Lock()

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        try:
            async with self._session_maker() as session:
                model = await session.get(DocumentModel, (collection, doc_id))
                return copy.deepcopy(model.data) if model else None
        except SQLAlchemyError as e:
            raise RepositoryException(
                f"Failed to read {collection}/{doc_id}",
                {"error": str(e)}
            )

    async def list(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None
    ) -> List[Document]:
        stmt = (
            select(DocumentModel)
            .where(DocumentModel.collection == collection)
            .order_by(DocumentModel.created_at, DocumentModel.id)
        )
        try:
            async with self._session_maker() as session:
                result = await session.execute(stmt)
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise RepositoryException(
                f"Failed to list {collection}",
                {"error": str(e)}
            )

        documents = [copy.deepcopy(row.data) for row in rows]
        if filters:
            documents = [doc for doc in documents if _matches(doc, filters)]
        return documents

    async def create(self, collection: str, doc_id: str, data: Document) -> Document:
        async with self._write_lock:
            try:
                async with self._session_maker() as session:
                    existing = await session.get(DocumentModel, (collection, doc_id))
                    if existing is not None:
                        raise ConflictException(
                            f"{collection} document '{doc_id}' already exists",
                            {"collection": collection, "id": doc_id}
                        )
                    now = datetime.now(timezone.utc)
                    session.add(DocumentModel(
                        collection=collection,
                        id=doc_id,
                        data=copy.deepcopy(data),
                        version=1,
                        created_at=now,
                        updated_at=now,
                    ))
                    await session.commit()
            except SQLAlchemyError as e:
                raise RepositoryException(
                    f"Failed to create {collection}/{doc_id}",
                    {"error": str(e)}
                )

        logger.debug("Document created", extra={"collection": collection, "doc_id": doc_id})
        return copy.deepcopy(data)

    async def mutate(
        self,
        collection: str,
        doc_id: str,
        fn: Callable[[Document], Document]
    ) -> Optional[Document]:
        async with self._write_lock:
            try:
                async with self._session_maker() as session:
                    model = await session.get(DocumentModel, (collection, doc_id))
                    if model is None:
                        return None

                    updated = fn(copy.deepcopy(model.data))
                    model.data = copy.deepcopy(updated)
                    model.version = model.version + 1
                    model.updated_at = datetime.now(timezone.utc)
                    await session.commit()
            except SQLAlchemyError as e:
                raise RepositoryException(
                    f"Failed to update {collection}/{doc_id}",
                    {"error": str(e)}
                )

        return updated

    async def version(self, collection: str, doc_id: str) -> Optional[int]:
        """Write counter of a document, or None if absent."""
        async with self._session_maker() as session:
            model = await session.get(DocumentModel, (collection, doc_id))
            return model.version if model else None

    async def count(self, collection: str) -> int:
        stmt = (
            select(func.count())
            .select_from(DocumentModel)
            .where(DocumentModel.collection == collection)
        )
        try:
            async with self._session_maker() as session:
                result = await session.execute(stmt)
                return int(result.scalar_one())
        except SQLAlchemyError as e:
            raise RepositoryException(
                f"Failed to count {collection}",
                {"error": str(e)}
            )

    async def clear(self) -> None:
        async with self._write_lock:
            async with self._session_maker() as session:
                await session.execute(delete(DocumentModel))
                await session.commit()
        logger.warning("Document store cleared")
