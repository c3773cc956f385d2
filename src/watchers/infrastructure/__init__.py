"""
Watchers Infrastructure Layer
=============================

- repositories: watcher and SLA violation collections
- external: webhook client, payment rail, in-process scheduler
"""
