"""
Marketplace Controllers (API Routes)
====================================

FastAPI routes for discovery, operator/type registration, receipts and
customer tiers.

Controllers delegate to application services; failures propagate as
application exceptions and are rendered by the shared handlers.
"""

from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, status

from src.container import ServiceContainer, get_container
from src.marketplace.application import CreateWatcherTypeRequest, RegisterOperatorRequest
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/marketplace", tags=["Marketplace"])
customers = APIRouter(prefix="/customers", tags=["Customers"])


# ========== Example payloads for Swagger ==========

REGISTER_OPERATOR_EXAMPLE = {
    "name": "Acme Watchers",
    "wallet": "0x1468b3fa064b44ba184ab34fd9cd9eb34e43f197",
    "description": "On-chain alerts for DeFi positions",
    "website": "https://acme.example",
}

CREATE_TYPE_EXAMPLE = {
    "operatorId": "5f0c2a9d1e3b4c7a",
    "name": "Token Price Alert",
    "category": "price",
    "description": "Notify when a token crosses a USD threshold",
    "price": 0.01,
    "executorId": "token-price",
}


# ========== Discovery ==========

@router.get("", summary="Marketplace info")
async def marketplace_info(container: ServiceContainer = Depends(get_container)):
    """Service info, categories, built-in executors, fees and free tier."""
    return container.marketplace.info()


@router.get("/operators", summary="List operators")
async def list_operators(container: ServiceContainer = Depends(get_container)):
    operators = await container.marketplace.list_operators()
    return {
        "count": len(operators),
        "operators": [
            {
                "id": o.id,
                "name": o.name,
                "description": o.description,
                "website": o.website,
                "stats": o.stats.to_document(),
                "createdAt": o.created_at.isoformat(),
            }
            for o in operators
        ],
    }


@router.post(
    "/operators",
    status_code=status.HTTP_201_CREATED,
    summary="Register as an operator",
    description="""
    Register a payout wallet as a marketplace operator (free).

    **Validation**: name of at least 2 characters, wallet `0x` + 40 hex chars.
    A wallet can only be registered once (409).
    """,
)
async def register_operator(
    request: RegisterOperatorRequest = Body(..., examples=[REGISTER_OPERATOR_EXAMPLE]),
    container: ServiceContainer = Depends(get_container)
):
    operator = await container.marketplace.register_operator(request)
    return {
        "success": True,
        "operator": {"id": operator.id, "name": operator.name, "wallet": operator.wallet},
        "message": "Operator registered. You can now create watcher types.",
    }


@router.get("/types", summary="List watcher types")
async def list_types(
    category: Optional[str] = Query(None, description="Filter by category"),
    operator_id: Optional[str] = Query(None, alias="operatorId", description="Filter by operator"),
    container: ServiceContainer = Depends(get_container)
):
    """Active watcher types enriched with their operator's name."""
    types = await container.marketplace.list_types(category=category, operator_id=operator_id)
    return {"count": len(types), "types": types}


@router.post(
    "/types",
    status_code=status.HTTP_201_CREATED,
    summary="Create a watcher type",
    description="""
    Publish a watcher type for an existing operator.

    **Validation**: name of at least 3 characters, a known category,
    price >= $0.001 and, when given, a registered executor id.
    """,
)
async def create_type(
    request: CreateWatcherTypeRequest = Body(..., examples=[CREATE_TYPE_EXAMPLE]),
    container: ServiceContainer = Depends(get_container)
):
    watcher_type = await container.marketplace.create_type(request)
    payout = container.marketplace.operator_payout(watcher_type.price)
    return {
        "success": True,
        "type": {
            "id": watcher_type.id,
            "name": watcher_type.name,
            "price": str(watcher_type.price),
        },
        "message": (
            f"Watcher type created. Customers pay ${watcher_type.price}, "
            f"you receive ${payout:.4f}."
        ),
    }


@router.get("/types/{type_id}", summary="Get watcher type")
async def get_type(type_id: str, container: ServiceContainer = Depends(get_container)):
    return await container.marketplace.describe_type(type_id)


# ========== Receipts ==========

@router.get("/receipts", summary="List receipts")
async def list_receipts(
    customer_id: Optional[str] = Query(None, alias="customerId"),
    watcher_id: Optional[str] = Query(None, alias="watcherId"),
    container: ServiceContainer = Depends(get_container)
):
    receipts = await container.receipt_service.list_receipts(
        customer_id=customer_id,
        watcher_id=watcher_id,
    )
    return {"count": len(receipts), "receipts": [r.to_document() for r in receipts]}


@router.get("/receipts/verify/{fulfillment_hash}", summary="Verify a fulfillment hash")
async def verify_receipt(
    fulfillment_hash: str,
    container: ServiceContainer = Depends(get_container)
):
    receipt = await container.receipt_service.verify(fulfillment_hash)
    return {"verified": True, "receipt": receipt.to_document()}


@router.get("/receipts/{receipt_id}", summary="Get receipt")
async def get_receipt(receipt_id: str, container: ServiceContainer = Depends(get_container)):
    receipt = await container.receipt_service.get(receipt_id)
    return receipt.to_document()


# ========== Customers ==========

@customers.get("/{customer_id}", summary="Get customer")
async def get_customer(customer_id: str, container: ServiceContainer = Depends(get_container)):
    customer = await container.customer_service.get(customer_id)
    return customer.to_document()


@customers.post(
    "/{customer_id}/upgrade",
    summary="Upgrade to the paid tier",
    description="""
    Move a customer from the free tier (1 watcher, 30-minute polling floor)
    to the paid tier. Records an upgrade payment; already paid customers get 409.
    """,
)
async def upgrade_customer(customer_id: str, container: ServiceContainer = Depends(get_container)):
    result = await container.customer_service.upgrade(customer_id)
    payment = result["payment"]
    return {
        "success": True,
        "customer": result["customer"].to_document(),
        "payment": payment.to_document() if payment else None,
        "message": "Upgraded to paid tier. Unlimited watchers and 5-minute polling unlocked.",
    }


# Export routers for inclusion in main app
marketplace_router = router
customers_router = customers
