"""
Watchers Application Layer
==========================

- services: watcher lifecycle (creation, batch, cancellation, refunds)
- checks: polling engine and webhook fan-out
- sla: downtime tracking, violations, automatic refunds
- billing: recurring billing and the payment rail contract
- dto: request bodies

Submodules are imported directly; the infrastructure layer depends on the
billing contract defined here.
"""
