"""
AI Orchestrator - OpenTelemetry Tracing

Every provider call (chat, stream open, image generation, health probe) runs
inside a CLIENT span named "<provider_id>.<operation>".

Usage:
    from ai_orchestrator.observability.tracing import setup_tracing

    # Optional; without it spans go to whatever tracer provider is global
    setup_tracing(
        service_name="ai-orchestrator",
        otlp_endpoint="http://localhost:4317",
    )
"""

import os
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource, SERVICE_NAME, SERVICE_VERSION
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
)
from opentelemetry.trace import SpanKind, Status, StatusCode

# Optional OTLP exporter (requires the "otlp" extra)
try:
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    OTLP_AVAILABLE = True
except ImportError:
    OTLP_AVAILABLE = False

INSTRUMENTATION_NAME = "ai_orchestrator"


class TracingManager:
    """
    Owns a TracerProvider and the tracer used for provider spans.

    A manager created with install_global=False leaves the global tracer
    provider alone, which is what tests want.
    """

    def __init__(
        self,
        service_name: str = "ai-orchestrator",
        service_version: str = "1.0.0",
        otlp_endpoint: Optional[str] = None,
        console_export: bool = False,
        exporter: Optional[SpanExporter] = None,
        install_global: bool = True,
    ):
        self.service_name = service_name
        self.service_version = service_version

        resource = Resource.create({
            SERVICE_NAME: service_name,
            SERVICE_VERSION: service_version,
        })
        self.provider = TracerProvider(resource=resource)

        if otlp_endpoint and OTLP_AVAILABLE:
            self.provider.add_span_processor(
                BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint))
            )

        if console_export:
            self.provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

        if exporter is not None:
            self.provider.add_span_processor(SimpleSpanProcessor(exporter))

        if install_global:
            trace.set_tracer_provider(self.provider)

        self.tracer = self.provider.get_tracer(INSTRUMENTATION_NAME, service_version)

    def get_tracer(self) -> trace.Tracer:
        return self.tracer

    def shutdown(self):
        self.provider.shutdown()


_tracing_instance: Optional[TracingManager] = None


def setup_tracing(
    service_name: str = "ai-orchestrator",
    service_version: str = "1.0.0",
    otlp_endpoint: Optional[str] = None,
    console_export: bool = False,
    exporter: Optional[SpanExporter] = None,
    install_global: bool = True,
) -> TracingManager:
    """
    Install a tracing manager.

    OTEL_EXPORTER_OTLP_ENDPOINT and OTEL_CONSOLE_EXPORT=true are honoured
    when the matching arguments are not given.
    """
    global _tracing_instance

    if otlp_endpoint is None:
        otlp_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")

    if os.getenv("OTEL_CONSOLE_EXPORT", "").lower() == "true":
        console_export = True

    _tracing_instance = TracingManager(
        service_name=service_name,
        service_version=service_version,
        otlp_endpoint=otlp_endpoint,
        console_export=console_export,
        exporter=exporter,
        install_global=install_global,
    )
    return _tracing_instance


def get_tracing_manager() -> Optional[TracingManager]:
    return _tracing_instance


def reset_tracing():
    """Drop the installed manager (for testing)."""
    global _tracing_instance
    if _tracing_instance is not None:
        _tracing_instance.shutdown()
    _tracing_instance = None


def get_tracer() -> trace.Tracer:
    """Tracer of the installed manager, else the global provider's tracer."""
    if _tracing_instance is not None:
        return _tracing_instance.get_tracer()
    return trace.get_tracer(INSTRUMENTATION_NAME)


@contextmanager
def trace_provider_call(
    provider: str,
    model: Optional[str],
    operation: str = "chat",
    attributes: Optional[Dict[str, Any]] = None,
) -> Iterator[trace.Span]:
    """
    Span around a single provider call.

    An exception escaping the block is recorded on the span and re-raised.

        with trace_provider_call("openai-main", "gpt-4o", "chat") as span:
            response = await provider.chat(messages)
            span.set_attribute("ai.tokens.total", response.usage.total_tokens)
    """
    span_attributes: Dict[str, Any] = {
        "ai.provider": provider,
        "ai.operation": operation,
    }
    if model:
        span_attributes["ai.model"] = model
    if attributes:
        span_attributes.update({k: v for k, v in attributes.items() if v is not None})

    with get_tracer().start_as_current_span(
        f"{provider}.{operation}",
        kind=SpanKind.CLIENT,
        attributes=span_attributes,
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        try:
            yield span
        except Exception as e:
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise
        else:
            span.set_status(Status(StatusCode.OK))
