"""
Watcher Application DTOs
========================

Request bodies for the watcher API. Typed loosely on purpose: the lifecycle
service validates in a fixed order and reports the first failure with a
structured error body.
"""

from typing import Any, Dict, List, Optional

from pydantic import Field

from src.core.models import DomainModel


class CreateWatcherRequest(DomainModel):
    """POST /watchers"""
    type_id: Any = Field(None, description="Watcher type to instantiate")
    config: Any = Field(None, description="Opaque executor configuration")
    webhook: Any = Field(None, description="http(s) URL receiving trigger events")
    customer_id: Optional[str] = Field(None, description="Falls back to X-Customer-ID")
    billing_cycle: Any = Field(None, description="one-time, weekly or monthly")
    polling_interval: Any = Field(None, description="Minutes between checks")
    ttl: Any = Field(None, description="Hours until expiry; null = never")
    retry_policy: Any = Field(None, description="{maxRetries, backoffMs}")


class BatchCreateRequest(DomainModel):
    """POST /watchers/batch"""
    watchers: Any = Field(None, description="1..50 watcher creation bodies")
    customer_id: Optional[str] = Field(None)


class CancelWatcherRequest(DomainModel):
    reason: Optional[str] = None


class AcknowledgeViolationRequest(DomainModel):
    resolution: Optional[str] = None


class TestWebhookRequest(DomainModel):
    webhook_url: Any = Field(None, description="URL to send a test payload to")


class BatchItemResult(DomainModel):
    index: int
    success: bool
    status: int
    watcher: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None


class BatchSummary(DomainModel):
    total: int
    successful: int
    failed: int


class BatchCreateResponse(DomainModel):
    success: bool
    summary: BatchSummary
    results: List[BatchItemResult]
