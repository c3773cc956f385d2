"""
Watchers Interfaces Layer
=========================

FastAPI route handlers for watcher instances, cron ticks, SLA violations
and the webhook tester.
"""

from src.watchers.interfaces.controllers import watchers_router

__all__ = ["watchers_router"]
