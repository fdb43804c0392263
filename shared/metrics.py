"""
Shared metrics configuration for the local API sidecar.
"""

import threading
from typing import Any, Dict, Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    Info,
    generate_latest,
)


class MetricsCollector:
    """Centralized metrics collector for the sidecar.

    Each collector owns its registry so that several gateway instances (and
    test apps) can coexist in one process.
    """

    content_type = CONTENT_TYPE_LATEST

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up metrics for the service."""

        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # HTTP metrics
        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type"],
            registry=self.registry
        )

        # Gateway metrics
        self._metrics["dispatch_outcomes_total"] = Counter(
            "dispatch_outcomes_total",
            "Dispatch outcomes by kind",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["remote_calls_total"] = Counter(
            "remote_calls_total",
            "Calls forwarded to the remote deployment",
            ["reason", "result"],
            registry=self.registry
        )

        self._metrics["secret_probes_total"] = Counter(
            "secret_probes_total",
            "Secret validation probes",
            ["key", "valid"],
            registry=self.registry
        )

        self._metrics["ssrf_rejections_total"] = Counter(
            "ssrf_rejections_total",
            "Outbound URLs rejected by the SSRF guard",
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_error(self, error_type: str):
        """Record error metrics."""
        self._metrics["errors_total"].labels(error_type=error_type).inc()

    def record_dispatch(self, outcome: str):
        self._metrics["dispatch_outcomes_total"].labels(outcome=outcome).inc()

    def record_remote_call(self, reason: str, result: str):
        self._metrics["remote_calls_total"].labels(reason=reason, result=result).inc()

    def record_secret_probe(self, key: str, valid: bool):
        self._metrics["secret_probes_total"].labels(key=key, valid=str(valid).lower()).inc()

    def record_ssrf_rejection(self):
        self._metrics["ssrf_rejections_total"].inc()

    def render(self) -> bytes:
        """Render the registry in Prometheus text exposition format."""
        with self._lock:
            return generate_latest(self.registry)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
