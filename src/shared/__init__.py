"""
Shared Kernel Module
====================

This module contains shared infrastructure used across all bounded contexts
(Marketplace and Watchers).

Architecture Pattern: Modular Monolith
- Each module (marketplace, watchers) is a bounded context
- Shared kernel contains only generic infrastructure: logging, metrics
  export and HTTP middleware

DO NOT add business logic from Marketplace or Watchers to shared kernel.
"""

__version__ = "2.0.0"
