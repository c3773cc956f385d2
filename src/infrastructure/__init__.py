"""
Infrastructure Layer
=====================

Technical concerns shared by the marketplace and watcher modules:
- Database engine and session management
- JSON document store
- Pluggable watcher executors
"""
