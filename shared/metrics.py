"""
Shared metrics configuration for the Campaign Access Gateway.
"""

from typing import Dict, Any, Optional

from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry, generate_latest


class MetricsCollector:
    """Centralized metrics collector for services.

    Each collector owns its registry so several service instances (tests,
    worker processes) never collide on metric names.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

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

        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        if self.service_name == "gateway":
            self._setup_gateway_metrics()

    def _setup_gateway_metrics(self):
        """Set up gateway-specific metrics."""
        self._metrics["rate_limit_decisions_total"] = Counter(
            "rate_limit_decisions_total",
            "Total throttle decisions",
            ["policy", "outcome"],
            registry=self.registry
        )

        self._metrics["rate_limit_entries"] = Gauge(
            "rate_limit_entries",
            "Live throttle entries per policy",
            ["policy"],
            registry=self.registry
        )

        self._metrics["rate_limit_sweeps_total"] = Counter(
            "rate_limit_sweeps_total",
            "Total sweep passes",
            ["policy"],
            registry=self.registry
        )

        self._metrics["rate_limit_swept_entries_total"] = Counter(
            "rate_limit_swept_entries_total",
            "Total expired throttle entries removed by sweeps",
            ["policy"],
            registry=self.registry
        )

        self._metrics["rate_limit_resets_total"] = Counter(
            "rate_limit_resets_total",
            "Total throttle key resets",
            ["policy"],
            registry=self.registry
        )

    def render(self) -> bytes:
        """Render the registry in Prometheus text format."""
        return generate_latest(self.registry)

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

    def record_health_check(self, status: str):
        """Record health check metrics."""
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def record_throttle_decision(self, policy: str, admitted: bool):
        """Record the outcome of a throttle check."""
        outcome = "admitted" if admitted else "rejected"
        self.increment_counter("rate_limit_decisions_total", policy=policy, outcome=outcome)

    def record_sweep(self, policy: str, removed: int, remaining: int):
        """Record a sweep pass over one policy's store."""
        self.increment_counter("rate_limit_sweeps_total", policy=policy)
        if removed and "rate_limit_swept_entries_total" in self._metrics:
            self._metrics["rate_limit_swept_entries_total"].labels(policy=policy).inc(removed)
        self.set_gauge("rate_limit_entries", remaining, policy=policy)

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).inc()

    def set_gauge(self, metric_name: str, value: float, **labels):
        """Set a gauge metric value."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).set(value)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
