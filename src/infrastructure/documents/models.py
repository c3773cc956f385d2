"""
Document Models
===============

SQLAlchemy ORM model backing the JSON document store.

Every collection (operators, watcher-types, watchers, payments, receipts,
customers, sla-violations) lives in the same table keyed by
(collection, id).
"""

from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import JSON, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from src.infrastructure.database import Base


class DocumentModel(Base):
    """
    Database model for a stored document.

    Maps to the 'documents' table.
    """
    __tablename__ = "documents"

    # Composite primary key
    collection: Mapped[str] = mapped_column(String(64), primary_key=True)
    id: Mapped[str] = mapped_column(String(128), primary_key=True)

    # Document body (camelCase JSON)
    data: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)

    # Bookkeeping
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    def __repr__(self) -> str:
        return f"<DocumentModel {self.collection}/{self.id} v{self.version}>"
