"""
Document Store
==============

JSON documents in a single SQLAlchemy table, with a typed repository layer.
"""

from src.infrastructure.documents.models import DocumentModel
from src.infrastructure.documents.repository import DocumentRepository
from src.infrastructure.documents.store import SQLAlchemyDocumentStore

__all__ = [
    "DocumentModel",
    "DocumentRepository",
    "SQLAlchemyDocumentStore",
]
