"""
Typed Document Repository
=========================

Generic repository mapping one document collection to one pydantic model.
Module repositories subclass it and add their query helpers.
"""

from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Generic, List, Optional, Type, TypeVar

from pydantic.alias_generators import to_camel

from src.core.models import DomainModel
from src.core.store import IDocumentStore

ModelT = TypeVar("ModelT", bound=DomainModel)


def _filter_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    return value


class DocumentRepository(Generic[ModelT]):
    """
    Repository over a single collection.

    Subclasses set ``collection`` and ``model``.
    """

    collection: str = ""
    model: Type[ModelT]

    def __init__(self, store: IDocumentStore):
        self._store = store

    def _load(self, data: Optional[dict]) -> Optional[ModelT]:
        if data is None:
            return None
        return self.model.from_document(data)

    async def get(self, entity_id: str) -> Optional[ModelT]:
        return self._load(await self._store.get(self.collection, entity_id))

    async def list(self, **filters: Any) -> List[ModelT]:
        """List entities; keyword filters use snake_case field names."""
        query = {
            to_camel(key): _filter_value(value)
            for key, value in filters.items()
            if value is not None
        }
        documents = await self._store.list(self.collection, query)
        return [self.model.from_document(doc) for doc in documents]

    async def count(self) -> int:
        return await self._store.count(self.collection)

    async def add(self, entity: ModelT) -> ModelT:
        await self._store.create(self.collection, entity.id, entity.to_document())
        return entity

    async def modify(
        self,
        entity_id: str,
        fn: Callable[[ModelT], Optional[ModelT]]
    ) -> Optional[ModelT]:
        """
        Atomically load, transform and save one entity.

        ``fn`` may mutate the entity in place (returning None) or return a
        replacement. Returns the saved entity, or None when it does not exist.
        """
        def apply(document: dict) -> dict:
            entity = self.model.from_document(document)
            result = fn(entity)
            return (result if result is not None else entity).to_document()

        return self._load(await self._store.mutate(self.collection, entity_id, apply))

    async def update(self, entity_id: str, **changes: Any) -> Optional[ModelT]:
        """Set top-level fields atomically."""
        def apply(entity: ModelT) -> None:
            for key, value in changes.items():
                setattr(entity, key, value)

        return await self.modify(entity_id, apply)

    async def increment_stat(
        self,
        entity_id: str,
        stat: str,
        amount: Any = 1
    ) -> Optional[ModelT]:
        """Atomically add ``amount`` to ``entity.stats.<stat>``."""
        def apply(entity: ModelT) -> None:
            stats = entity.stats
            setattr(stats, stat, getattr(stats, stat) + amount)

        return await self.modify(entity_id, apply)
