"""
Watcher Controllers (API Routes)
================================

FastAPI routes for watcher instances, the cron ticks, SLA violations and
the free webhook tester.

Controllers delegate to application services.
"""

import time
from typing import Optional

from fastapi import APIRouter, Body, Depends, Header, Query, status
from fastapi.responses import JSONResponse

from src.config import settings
from src.container import ServiceContainer, get_container
from src.core.exceptions import InvalidConfigException, UnauthorizedException
from src.core.models import utc_now
from src.shared.api.middleware import error_body, status_for_exception
from src.shared.infrastructure.logging import get_logger, log_latency
from src.watchers.application.dto import (
    AcknowledgeViolationRequest,
    BatchCreateRequest,
    BatchCreateResponse,
    BatchItemResult,
    BatchSummary,
    CancelWatcherRequest,
    CreateWatcherRequest,
    TestWebhookRequest,
)
from src.watchers.application.services import WatcherLifecycleService

logger = get_logger(__name__)
router = APIRouter(tags=["Watchers"])


# ========== Example payloads for Swagger ==========

CREATE_WATCHER_EXAMPLE = {
    "typeId": "5f0c2a9d1e3b4c7a",
    "config": {"token": "ETH", "threshold": 4000, "direction": "above"},
    "webhook": "https://example.com/hooks/eth",
    "billingCycle": "one-time",
    "pollingInterval": 15,
    "ttl": 72,
    "retryPolicy": {"maxRetries": 3, "backoffMs": 1000},
}


# ========== Dependencies ==========

async def verify_cron_secret(x_cron_secret: Optional[str] = Header(None)) -> None:
    """When CRON_SECRET is configured, the X-Cron-Secret header must match."""
    if settings.cron_secret and x_cron_secret != settings.cron_secret:
        raise UnauthorizedException("Invalid or missing X-Cron-Secret header")


# ========== Watchers ==========

@router.post(
    "/watchers",
    summary="Create a watcher",
    description="""
    Create a paid watcher instance from a watcher type.

    **Idempotent**: the same typeId, config, webhook and customer always map
    to the same receipt. A replay returns 200 with `idempotent: true`; a new
    watcher returns 201.

    **Free tier**: one watcher per customer (402 afterwards) and polling no
    faster than every 30 minutes.
    """,
    responses={
        201: {"description": "Watcher created"},
        200: {"description": "Idempotent replay"},
        402: {"description": "Free tier limit exceeded"},
    },
)
async def create_watcher(
    request: CreateWatcherRequest = Body(..., examples=[CREATE_WATCHER_EXAMPLE]),
    x_customer_id: Optional[str] = Header(None),
    container: ServiceContainer = Depends(get_container)
):
    result = await container.lifecycle.create_watcher(request, x_customer_id)
    return JSONResponse(
        status_code=status.HTTP_200_OK if result.idempotent else status.HTTP_201_CREATED,
        content=result.to_dict(),
    )


@router.post(
    "/watchers/batch",
    response_model=BatchCreateResponse,
    summary="Create watchers in bulk",
    description="""
    Create 1-50 watchers; every item runs the full creation pipeline on its own.

    Returns 201 when all succeed, 207 on partial success and 400 when all fail.
    """,
)
async def create_batch(
    request: BatchCreateRequest,
    x_customer_id: Optional[str] = Header(None),
    container: ServiceContainer = Depends(get_container)
):
    outcomes = await container.lifecycle.create_batch(
        request.watchers,
        request.customer_id or x_customer_id,
    )

    results = []
    for outcome in outcomes:
        if outcome.success:
            results.append(BatchItemResult(
                index=outcome.index,
                success=True,
                status=200 if outcome.result.idempotent else 201,
                watcher=outcome.result.to_dict(),
            ))
        else:
            results.append(BatchItemResult(
                index=outcome.index,
                success=False,
                status=status_for_exception(outcome.error),
                error=error_body(outcome.error),
            ))

    successful = sum(1 for r in results if r.success)
    response = BatchCreateResponse(
        success=successful > 0,
        summary=BatchSummary(
            total=len(results),
            successful=successful,
            failed=len(results) - successful,
        ),
        results=results,
    )

    if successful == len(results):
        status_code = status.HTTP_201_CREATED
    elif successful == 0:
        status_code = status.HTTP_400_BAD_REQUEST
    else:
        status_code = status.HTTP_207_MULTI_STATUS

    return JSONResponse(status_code=status_code, content=response.to_document())


@router.get("/watchers", summary="List watchers")
async def list_watchers(
    customer_id: Optional[str] = Query(None, alias="customerId"),
    container: ServiceContainer = Depends(get_container)
):
    watchers = await container.lifecycle.list_watchers(customer_id)
    return {
        "count": len(watchers),
        "watchers": [
            {
                "id": w.id,
                "typeId": w.type_id,
                "status": w.status,
                "triggerCount": w.trigger_count,
                "lastChecked": w.last_checked.isoformat() if w.last_checked else None,
                "createdAt": w.created_at.isoformat(),
            }
            for w in watchers
        ],
    }


@router.get("/watchers/{watcher_id}", summary="Get watcher")
async def get_watcher(watcher_id: str, container: ServiceContainer = Depends(get_container)):
    return await container.lifecycle.describe_watcher(watcher_id)


@router.delete(
    "/watchers/{watcher_id}",
    summary="Cancel a watcher",
    description="Stops checks and future billing. No proration; see refund-status.",
)
async def cancel_watcher(
    watcher_id: str,
    request: Optional[CancelWatcherRequest] = Body(None),
    container: ServiceContainer = Depends(get_container)
):
    reason = request.reason if request else None
    watcher = await container.lifecycle.cancel_watcher(watcher_id, reason)
    return {
        "success": True,
        "watcher": {
            "id": watcher.id,
            "status": watcher.status,
            "cancelledAt": watcher.cancelled_at.isoformat() if watcher.cancelled_at else None,
            "cancellationReason": watcher.cancellation_reason,
        },
        "message": "Watcher cancelled successfully. Future billing stopped.",
    }


@router.get("/watchers/{watcher_id}/refund-status", summary="Refund eligibility")
async def refund_status(watcher_id: str, container: ServiceContainer = Depends(get_container)):
    return await container.lifecycle.refund_status(watcher_id)


@router.get("/watchers/{watcher_id}/billing", summary="Billing status")
async def billing_status(watcher_id: str, container: ServiceContainer = Depends(get_container)):
    return {"success": True, **await container.billing.billing_status(watcher_id)}


@router.get("/watchers/{watcher_id}/sla", summary="SLA status")
async def sla_status(watcher_id: str, container: ServiceContainer = Depends(get_container)):
    return {"success": True, **await container.sla.sla_status(watcher_id)}


# ========== Cron ==========

@router.post(
    "/cron/check",
    tags=["Cron"],
    summary="Run one check tick",
    dependencies=[Depends(verify_cron_secret)],
)
async def cron_check(container: ServiceContainer = Depends(get_container)):
    with log_latency(logger, "cron_check"):
        summary = await container.checks.run_checks()
    return {"success": True, **summary.to_dict()}


@router.post(
    "/cron/billing",
    tags=["Cron"],
    summary="Process due recurring billings",
    dependencies=[Depends(verify_cron_secret)],
)
async def cron_billing(container: ServiceContainer = Depends(get_container)):
    start = time.perf_counter()
    summary = await container.billing.process_all_due_billings()
    body = {"success": True, **summary.to_dict()}
    if summary.total_due == 0:
        body["message"] = "No billing due"
    body["durationMs"] = int((time.perf_counter() - start) * 1000)
    body["timestamp"] = utc_now().isoformat()
    return body


# ========== SLA violations ==========

@router.get("/sla-violations", tags=["SLA"], summary="List SLA violations")
async def list_violations(
    watcher_id: Optional[str] = Query(None, alias="watcherId"),
    operator_id: Optional[str] = Query(None, alias="operatorId"),
    customer_id: Optional[str] = Query(None, alias="customerId"),
    violation_type: Optional[str] = Query(None, alias="violationType"),
    container: ServiceContainer = Depends(get_container)
):
    violations = await container.sla.list_violations(
        watcher_id=watcher_id,
        operator_id=operator_id,
        customer_id=customer_id,
        violation_type=violation_type,
    )
    return {"count": len(violations), "violations": [v.to_document() for v in violations]}


@router.post(
    "/sla-violations/{violation_id}/acknowledge",
    tags=["SLA"],
    summary="Acknowledge an SLA violation",
)
async def acknowledge_violation(
    violation_id: str,
    request: Optional[AcknowledgeViolationRequest] = Body(None),
    container: ServiceContainer = Depends(get_container)
):
    resolution = request.resolution if request else None
    violation = await container.sla.acknowledge(violation_id, resolution)
    return {"success": True, "violation": violation.to_document()}


# ========== Webhook tester ==========

@router.post(
    "/test-webhook",
    tags=["Testing"],
    summary="Send a test payload to a webhook URL",
    description="Free endpoint for checking a webhook before paying for a watcher.",
)
async def test_webhook(
    request: TestWebhookRequest,
    container: ServiceContainer = Depends(get_container)
):
    url = request.webhook_url
    if not isinstance(url, str) or not url:
        raise InvalidConfigException("webhookUrl", "webhookUrl is required and must be a string")
    WatcherLifecycleService.validate_webhook(url, field="webhookUrl")

    result = await container.webhooks.send_test(url)
    body = {
        "success": result.success,
        "webhookUrl": result.url,
        "responseTimeMs": result.response_time_ms,
        "payload": result.payload,
    }
    if result.success:
        body["response"] = {
            "status": result.status_code,
            "statusText": result.status_text,
            "headers": result.headers,
            "body": result.body,
        }
    else:
        body["error"] = {"type": result.error_type, "message": result.error}
    return body


# Export router for inclusion in main app
watchers_router = router
