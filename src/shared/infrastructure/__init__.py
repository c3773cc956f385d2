"""
Infrastructure Layer
=====================

Low-level technical concerns:
- Structured JSON logging setup
- Grafana OTLP metrics export
"""
