"""
AI Orchestrator - Prometheus Export

Mirrors MetricsCollector events into prometheus_client metrics.

Metrics exposed:
- orchestrator_selections_total: Counter of provider selections by strategy
- orchestrator_requests_total: Counter of finished attempts by provider and status
- orchestrator_request_duration_seconds: Histogram of attempt latency
- orchestrator_tokens_total: Counter of tokens used (prompt/completion)
- orchestrator_cost_total: Counter of cost in provider pricing units
- orchestrator_active_requests: Gauge of in-flight attempts
- orchestrator_health_checks_total: Counter of probe results
- orchestrator_health_check_latency_seconds: Histogram of probe latency
- orchestrator_circuit_breaker_state: Gauge of breaker state (0=closed, 1=open)

Usage:
    from prometheus_client import CollectorRegistry

    registry = CollectorRegistry()
    exporter = PrometheusExporter(registry)
    exporter.attach(dispatcher.metrics)

    body = exporter.render_latest()
"""

from typing import Callable, Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    REGISTRY,
    generate_latest,
)

from .metrics import MetricsCollector, MetricsEvent, MetricsEventType

# Provider calls typically range from 0.1s to 60s+
LATENCY_BUCKETS = (0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 25.0, 50.0, 100.0, float("inf"))
HEALTH_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)


class PrometheusExporter:
    """
    Prometheus metrics for one dispatcher.

    Pass a dedicated CollectorRegistry per exporter; registering the same
    metric names twice on one registry raises.
    """

    def __init__(self, registry: CollectorRegistry = REGISTRY, namespace: str = "orchestrator"):
        self.registry = registry
        self._unsubscribe: Optional[Callable[[], None]] = None

        self.selections_total = Counter(
            f"{namespace}_selections_total",
            "Total provider selections",
            labelnames=["provider", "strategy"],
            registry=registry,
        )

        self.requests_total = Counter(
            f"{namespace}_requests_total",
            "Total finished provider attempts",
            labelnames=["provider", "status", "error_type"],
            registry=registry,
        )

        self.request_duration = Histogram(
            f"{namespace}_request_duration_seconds",
            "Provider attempt duration in seconds",
            labelnames=["provider", "status"],
            buckets=LATENCY_BUCKETS,
            registry=registry,
        )

        self.tokens_total = Counter(
            f"{namespace}_tokens_total",
            "Total tokens used",
            labelnames=["provider", "type"],  # type = prompt/completion
            registry=registry,
        )

        self.cost_total = Counter(
            f"{namespace}_cost_total",
            "Total cost in provider pricing units",
            labelnames=["provider"],
            registry=registry,
        )

        self.active_requests = Gauge(
            f"{namespace}_active_requests",
            "Provider attempts currently in flight",
            labelnames=["provider"],
            registry=registry,
        )

        self.health_checks_total = Counter(
            f"{namespace}_health_checks_total",
            "Health probe results",
            labelnames=["provider", "healthy"],
            registry=registry,
        )

        self.health_check_latency = Histogram(
            f"{namespace}_health_check_latency_seconds",
            "Latency reported by health probes",
            labelnames=["provider"],
            buckets=HEALTH_BUCKETS,
            registry=registry,
        )

        self.circuit_breaker_state = Gauge(
            f"{namespace}_circuit_breaker_state",
            "Circuit breaker state (0=closed, 1=open)",
            labelnames=["provider"],
            registry=registry,
        )

    # ------------------------------------------------------------------

    def attach(self, collector: MetricsCollector):
        """Subscribe to a collector's events. Re-attaching detaches first."""
        self.detach()
        self._unsubscribe = collector.on_event(self.handle_event)

    def detach(self):
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def handle_event(self, event: MetricsEvent):
        provider = event.provider_id

        if event.type == MetricsEventType.PROVIDER_SELECTED:
            self.selections_total.labels(provider=provider, strategy=event.strategy or "unknown").inc()

        elif event.type == MetricsEventType.REQUEST_STARTED:
            self.active_requests.labels(provider=provider).inc()

        elif event.type == MetricsEventType.REQUEST_SUCCESS:
            self.active_requests.labels(provider=provider).dec()
            self.requests_total.labels(provider=provider, status="success", error_type="none").inc()
            if event.latency is not None:
                self.request_duration.labels(provider=provider, status="success").observe(event.latency / 1000)

            usage = event.usage
            if usage:
                self.tokens_total.labels(provider=provider, type="prompt").inc(usage.prompt_tokens)
                self.tokens_total.labels(provider=provider, type="completion").inc(usage.completion_tokens)
            if event.cost:
                self.cost_total.labels(provider=provider).inc(event.cost)

        elif event.type == MetricsEventType.REQUEST_FAILURE:
            self.active_requests.labels(provider=provider).dec()
            error_type = type(event.error).__name__ if event.error is not None else "unknown"
            self.requests_total.labels(provider=provider, status="failure", error_type=error_type).inc()
            if event.latency is not None:
                self.request_duration.labels(provider=provider, status="failure").observe(event.latency / 1000)

        elif event.type == MetricsEventType.HEALTH_CHECK:
            healthy = bool(event.health and event.health.healthy)
            self.health_checks_total.labels(provider=provider, healthy=str(healthy).lower()).inc()
            if event.latency is not None:
                self.health_check_latency.labels(provider=provider).observe(event.latency / 1000)

    def set_circuit_breaker_state(self, provider: str, state: str):
        """state is a CircuitState or its string value."""
        self.circuit_breaker_state.labels(provider=provider).set(
            1 if state == "open" else 0
        )

    def render_latest(self) -> bytes:
        """Text exposition of this exporter's registry."""
        return generate_latest(self.registry)

    @property
    def content_type(self) -> str:
        return CONTENT_TYPE_LATEST
