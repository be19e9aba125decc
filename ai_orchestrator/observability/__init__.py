"""
AI Orchestrator - Observability Module

- In-memory metrics collector with event subscribers
- Prometheus export
- Structured JSON logging
- OpenTelemetry tracing of provider calls
"""

from .logging import (
    JSONFormatter,
    LogContext,
    StructuredLogger,
    TimedOperation,
    get_logger,
    setup_logging,
)
from .metrics import (
    MetricsCollector,
    MetricsEvent,
    MetricsEventType,
    OrchestratorMetrics,
    ProviderMetrics,
    RequestHistoryEntry,
    StrategyMetrics,
)
from .prometheus import PrometheusExporter
from .tracing import (
    TracingManager,
    get_tracer,
    get_tracing_manager,
    setup_tracing,
    trace_provider_call,
)

__all__ = [
    # Logging
    "JSONFormatter",
    "LogContext",
    "StructuredLogger",
    "TimedOperation",
    "get_logger",
    "setup_logging",
    # Metrics
    "MetricsCollector",
    "MetricsEvent",
    "MetricsEventType",
    "OrchestratorMetrics",
    "ProviderMetrics",
    "RequestHistoryEntry",
    "StrategyMetrics",
    "PrometheusExporter",
    # Tracing
    "TracingManager",
    "get_tracer",
    "get_tracing_manager",
    "setup_tracing",
    "trace_provider_call",
]
