"""
Watchers Module
===============

Bounded context for watcher instances and the engines that run them.

Responsibilities:
- Watcher lifecycle: idempotent creation, batch creation, cancellation
- Check/polling engine with webhook delivery and retries
- SLA tracking, violation detection and automatic refunds
- Recurring billing with suspension on failure
"""
