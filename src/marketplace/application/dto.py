"""
Marketplace Application DTOs
============================

Request bodies for the marketplace API. Fields are deliberately loose;
business validation happens in the services so every rejection carries the
same structured error body.
"""

from typing import Any, Optional

from pydantic import Field

from src.core.models import DomainModel


class RegisterOperatorRequest(DomainModel):
    """POST /marketplace/operators"""
    name: Any = Field(None, description="Display name (min 2 chars)")
    wallet: Any = Field(None, description="Payout address, 0x + 40 hex chars")
    description: Optional[str] = Field(None, description="What the operator offers")
    website: Optional[str] = Field(None, description="Optional URL")


class CreateWatcherTypeRequest(DomainModel):
    """POST /marketplace/types"""
    operator_id: Any = Field(None, description="Owning operator")
    name: Any = Field(None, description="Type name (min 3 chars)")
    category: Any = Field(None, description="wallet, price, contract, social, defi or custom")
    description: Optional[str] = Field(None)
    price: Any = Field(None, description="Creation price in USD (>= 0.001)")
    executor_id: Optional[str] = Field(None, description="Registered executor id")
    config_schema: Optional[Any] = Field(None, description="JSON schema of the watcher config")
