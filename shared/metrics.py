"""
Shared metrics configuration for the ICP lookup service.
"""

from typing import Dict, Any, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, Info, generate_latest


class MetricsCollector:
    """Centralized metrics collector for a service."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        # Each collector owns its registry so several apps can live in one process
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

        self._setup_lookup_metrics()

    def _setup_lookup_metrics(self):
        """Set up cache and upstream metrics."""
        self._metrics["cache_lookups_total"] = Counter(
            "cache_lookups_total",
            "Cache lookups by the tier that answered them",
            ["cache_type", "tier"],
            registry=self.registry
        )

        self._metrics["upstream_calls_total"] = Counter(
            "upstream_calls_total",
            "Total upstream ICP calls",
            ["operation", "outcome"],
            registry=self.registry
        )

        self._metrics["upstream_call_duration_seconds"] = Histogram(
            "upstream_call_duration_seconds",
            "Upstream ICP call duration in seconds",
            ["operation"],
            registry=self.registry
        )

        self._metrics["deadline_exceeded_total"] = Counter(
            "deadline_exceeded_total",
            "Lookups that lost the race against their deadline",
            ["mode"],
            registry=self.registry
        )

        self._metrics["background_task_failures_total"] = Counter(
            "background_task_failures_total",
            "Detached tasks that finished with an exception",
            ["task"],
            registry=self.registry
        )

    def render(self) -> bytes:
        """Render the registry in Prometheus text format."""
        return generate_latest(self.registry)

    def sample(self, name: str, **labels) -> Optional[float]:
        """Read back a single sample value from the registry."""
        return self.registry.get_sample_value(name, labels)

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

    def record_cache_lookup(self, cache_type: str, tier: str):
        """Record which tier (fresh, stale, miss) answered a lookup."""
        self._metrics["cache_lookups_total"].labels(cache_type=cache_type, tier=tier).inc()

    def record_upstream_call(self, operation: str, outcome: str, duration: float):
        """Record an upstream call and its latency."""
        self._metrics["upstream_calls_total"].labels(operation=operation, outcome=outcome).inc()
        self._metrics["upstream_call_duration_seconds"].labels(operation=operation).observe(duration)

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).inc()


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
