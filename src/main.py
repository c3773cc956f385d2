"""
Sentinel Marketplace - Main Application
=======================================

Marketplace for paid monitoring agents ("watchers").

Modules:
- Marketplace: operators, watcher types, customers, receipts
- Watchers: lifecycle, check engine, SLA refunds, recurring billing

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: Document store, executors, webhooks, payment rail
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

# Configuration and Core
from src.config import settings
from src.container import ServiceContainer
from src.core import ApplicationException

# Infrastructure
from src.infrastructure.database import close_database, create_tables, get_session_maker, init_database
from src.infrastructure.documents import SQLAlchemyDocumentStore

# Marketplace module
from src.marketplace.application import seed_marketplace
from src.marketplace.infrastructure import PolicyConfigManager
from src.marketplace.interfaces import customers_router, marketplace_router

# Watchers module
from src.watchers.infrastructure.external import CronScheduler
from src.watchers.interfaces import watchers_router

# Shared
from src.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    MetricsMiddleware,
    application_exception_handler,
    global_exception_handler,
    validation_exception_handler,
)
from src.shared.infrastructure.grafana import get_grafana_exporter, init_grafana_exporter
from src.shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create the document table
    3. Load marketplace policy and watch the file
    4. Wire the service container
    5. Seed an empty marketplace
    6. Start the in-process scheduler (when enabled)

    SHUTDOWN:
    1. Stop scheduler
    2. Close HTTP clients and policy watcher
    3. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Sentinel Marketplace", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database()
    database_ready = True
    try:
        await create_tables()
    except SQLAlchemyError as e:
        database_ready = False
        logger.warning("Database not available - running in degraded mode", extra={"error": str(e)})

    logger.info("Loading marketplace policy")
    policy_manager = PolicyConfigManager()
    policy_manager.load(settings.marketplace_config_path)
    policy_manager.start_watching()

    if settings.grafana_host and settings.grafana_api_key and settings.grafana_instance_id:
        init_grafana_exporter(
            host=settings.grafana_host,
            api_key=settings.grafana_api_key,
            instance_id=settings.grafana_instance_id
        )
    else:
        logger.info("Grafana OTLP exporter not configured - metrics will not be exported")

    container = ServiceContainer(
        SQLAlchemyDocumentStore(get_session_maker()),
        policy_manager=policy_manager,
    )
    app.state.container = container
    app.state.settings = settings

    if settings.auto_seed and database_ready:
        await seed_marketplace(container.marketplace)

    scheduler = CronScheduler(
        check_interval_seconds=settings.check_interval_seconds,
        billing_interval_seconds=settings.billing_interval_seconds,
    )
    await scheduler.start(container.checks.run_checks, container.billing.process_all_due_billings)
    app.state.scheduler = scheduler

    logger.info("Sentinel Marketplace started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Sentinel Marketplace")
    await scheduler.stop()
    await container.close()
    await close_database()
    logger.info("Sentinel Marketplace shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Sentinel Marketplace API",
    description="""
    ## Marketplace for paid monitoring agents

    Operators publish watcher types; customers pay per instance and receive
    webhooks when a watcher's condition fires.

    ---

    ### Marketplace

    - `GET /marketplace` - Service info, categories, fees, free tier
    - `POST /marketplace/operators` - Register as an operator
    - `POST /marketplace/types` - Publish a watcher type
    - `GET /marketplace/receipts/verify/{hash}` - Verify a fulfillment receipt

    ### Watchers

    - `POST /watchers` - Create a watcher (idempotent)
    - `POST /watchers/batch` - Create up to 50 watchers
    - `DELETE /watchers/{id}` - Cancel a watcher
    - `GET /watchers/{id}/sla` - Uptime, violations and refunds

    ### Cron

    - `POST /cron/check` - Run one check tick
    - `POST /cron/billing` - Process due recurring billings

    ---

    ### Revenue split

    | Party | Share |
    |-------|-------|
    | Operator | 80% |
    | Platform | 20% |
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware (from shared) ===
app.add_middleware(CorrelationIDMiddleware)
app.add_middleware(MetricsMiddleware)
app.add_middleware(LoggingMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(marketplace_router)
app.include_router(customers_router)
app.include_router(watchers_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service is healthy",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "2.0.0",
                    "environment": "development",
                    "checks": {
                        "database": "connected",
                        "policy": "loaded",
                        "scheduler": "external",
                        "grafana": "not_configured"
                    }
                }
            }
        }
    }
})
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Reports database connectivity, policy state, scheduler mode and
    metrics export.
    """
    container: ServiceContainer = request.app.state.container
    scheduler: CronScheduler = request.app.state.scheduler

    checks = {
        "database": "connected",
        "policy": "loaded",
        "scheduler": "running" if scheduler.is_running else "external",
        "grafana": "enabled" if get_grafana_exporter().is_enabled() else "not_configured",
    }

    healthy = True
    try:
        await container.operators.count()
    except ApplicationException as e:
        healthy = False
        checks["database"] = f"error: {e.message}"

    return {
        "status": "healthy" if healthy else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/stats", tags=["Health"])
async def platform_stats(request: Request):
    """Platform totals: operators, types, watchers, payments, revenue."""
    container: ServiceContainer = request.app.state.container
    watchers = await container.lifecycle.all_watchers()
    return await container.marketplace.stats(watchers)


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": "Sentinel Marketplace",
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "marketplace": {
                "prefix": "/marketplace",
                "endpoints": [
                    "GET /marketplace - Service info",
                    "GET /marketplace/types - Browse watcher types",
                    "POST /marketplace/operators - Register operator",
                    "POST /marketplace/types - Create watcher type",
                    "GET /marketplace/receipts - Receipt audit trail"
                ]
            },
            "watchers": {
                "prefix": "/watchers",
                "endpoints": [
                    "POST /watchers - Create watcher",
                    "POST /watchers/batch - Batch create",
                    "DELETE /watchers/{id} - Cancel watcher",
                    "GET /watchers/{id}/refund-status - Refund eligibility",
                    "GET /watchers/{id}/billing - Billing history",
                    "GET /watchers/{id}/sla - SLA status"
                ]
            },
            "customers": {
                "prefix": "/customers",
                "endpoints": [
                    "GET /customers/{id} - Customer tier and stats",
                    "POST /customers/{id}/upgrade - Upgrade to paid tier"
                ]
            }
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
