"""
Marketplace Interfaces Layer
============================

FastAPI route handlers for the catalogue, receipts and customers.

This is the outermost layer - handles HTTP requests/responses and
delegates to application services.
"""

from src.marketplace.interfaces.controllers import customers_router, marketplace_router

__all__ = ["customers_router", "marketplace_router"]
