"""
Core Models
===========

Base pydantic model shared by every persisted entity.

Documents are stored and served with camelCase keys; Python code uses
snake_case attribute names.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def generate_id(prefix: str = "") -> str:
    """Opaque 16-hex-char identifier with an optional prefix."""
    return f"{prefix}{uuid4().hex[:16]}"


def to_money(value: Any) -> Decimal:
    """Normalize a numeric value to a Decimal without float drift."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class DomainModel(BaseModel):
    """
    Base class for all documents.

    - camelCase aliases for storage and API
    - populate by either field name or alias
    - enums stored by value
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        validate_assignment=False,
    )

    def to_document(self) -> Dict[str, Any]:
        """JSON-compatible dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, data: Dict[str, Any]):
        return cls.model_validate(data)
