"""
Marketplace Module
==================

Bounded context for the marketplace catalogue and its money trail.

Responsibilities:
- Operator registration and watcher type catalogue
- Customers and free/paid tiers
- Payments with the operator/platform revenue split
- Fulfillment receipts (idempotency witness)
- Marketplace policy loading with hot-reload
"""
