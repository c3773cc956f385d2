"""
Grafana OTLP Metrics Exporter
==============================

Pushes scheduler tick metrics to Grafana Cloud via OTLP.

Metrics exported (one gauge data point per tick):
- sentinel_checks_total, sentinel_triggers_total, sentinel_check_errors_total,
  sentinel_webhook_failures_total, sentinel_sla_violations_total
- sentinel_billing_due, sentinel_billing_successful, sentinel_billing_failed,
  sentinel_billing_suspended
"""

import base64
import time
from typing import Optional, Dict, Any, List

import httpx

from src.config import settings
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class GrafanaOTLPExporter:
    """
    Export service metrics to Grafana Cloud via OTLP HTTP endpoint.

    Uses OpenTelemetry Protocol (OTLP) JSON format. Without credentials every
    export is a no-op returning False.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        api_key: Optional[str] = None,
        instance_id: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize Grafana OTLP exporter.

        Args:
            host: Grafana OTLP gateway URL (e.g., https://otlp-gateway-prod-ap-south-1.grafana.net)
            api_key: Grafana API key
            instance_id: Instance ID for authentication
            client: Optional shared HTTP client
        """
        self._host = host or settings.grafana_host
        self._api_key = api_key or settings.grafana_api_key
        self._instance_id = instance_id or settings.grafana_instance_id
        self._client = client
        self._enabled = bool(self._host and self._api_key and self._instance_id)

        if self._enabled:
            auth_pair = f"{self._instance_id}:{self._api_key}"
            self._auth_encoded = base64.b64encode(auth_pair.encode()).decode()
            # Don't double-append the path if host already includes it
            if "/otlp/v1/metrics" not in self._host:
                self._url = f"{self._host}/otlp/v1/metrics"
            else:
                self._url = self._host
            logger.info(
                "Grafana OTLP exporter initialized",
                extra={"host": self._host, "instance_id": self._instance_id}
            )
        else:
            logger.debug("Grafana OTLP exporter not configured - metrics will not be exported")

    def is_enabled(self) -> bool:
        """Check if exporter is properly configured."""
        return self._enabled

    def _build_payload(
        self,
        metrics: Dict[str, Any],
        unit: str,
        attributes: Dict[str, str]
    ) -> Dict[str, Any]:
        timestamp_ns = int(time.time() * 1_000_000_000)
        metric_attributes = [
            {"key": key, "value": {"stringValue": str(value)}}
            for key, value in attributes.items()
        ]
        metric_attributes.append(
            {"key": "service", "value": {"stringValue": settings.app_name}}
        )

        otlp_metrics: List[Dict[str, Any]] = []
        for name, value in metrics.items():
            data_point = {"timeUnixNano": timestamp_ns, "attributes": metric_attributes}
            if isinstance(value, int):
                data_point["asInt"] = value
            else:
                data_point["asDouble"] = float(value)
            otlp_metrics.append({
                "name": name,
                "unit": unit,
                "gauge": {"dataPoints": [data_point]},
            })

        return {
            "resourceMetrics": [
                {
                    "resource": {
                        "attributes": [
                            {"key": "service.name", "value": {"stringValue": settings.app_name}},
                            {"key": "service.version", "value": {"stringValue": settings.app_version}},
                            {"key": "deployment.environment", "value": {"stringValue": settings.environment}},
                        ]
                    },
                    "scopeMetrics": [{"metrics": otlp_metrics}],
                }
            ]
        }

    async def _send(self, payload: Dict[str, Any]) -> bool:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Basic {self._auth_encoded}",
            "X-Grafana-Org-Id": str(self._instance_id)
        }

        try:
            if self._client is not None:
                response = await self._client.post(self._url, headers=headers, json=payload)
            else:
                async with httpx.AsyncClient(timeout=10.0) as client:
                    response = await client.post(self._url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            logger.error("Error exporting metrics to Grafana", extra={"error": str(e)})
            return False

        if response.status_code in (200, 202):
            return True

        logger.warning(
            "Failed to export metrics to Grafana",
            extra={
                "status_code": response.status_code,
                "response": response.text[:500],
                "url": self._url
            }
        )
        return False

    async def export_counters(
        self,
        job: str,
        counters: Dict[str, Any],
        attributes: Optional[Dict[str, str]] = None
    ) -> bool:
        """
        Export the counters of one scheduler tick.

        Args:
            job: Tick name ("check" or "billing")
            counters: metric name -> value
            attributes: Additional attributes

        Returns:
            True if export succeeded, False otherwise
        """
        if not self._enabled:
            return False

        payload = self._build_payload(counters, "1", {"job": job, **(attributes or {})})
        exported = await self._send(payload)
        if exported:
            logger.debug("Tick metrics exported to Grafana", extra={"job": job})
        return exported


# Global exporter instance
_grafana_exporter: Optional[GrafanaOTLPExporter] = None


def get_grafana_exporter() -> GrafanaOTLPExporter:
    """Get or create global Grafana exporter instance."""
    global _grafana_exporter
    if _grafana_exporter is None:
        _grafana_exporter = GrafanaOTLPExporter()
    return _grafana_exporter


def init_grafana_exporter(
    host: str,
    api_key: str,
    instance_id: str
) -> GrafanaOTLPExporter:
    """Initialize Grafana exporter with credentials."""
    global _grafana_exporter
    _grafana_exporter = GrafanaOTLPExporter(
        host=host,
        api_key=api_key,
        instance_id=instance_id
    )
    return _grafana_exporter
