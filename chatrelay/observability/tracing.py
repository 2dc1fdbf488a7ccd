"""
chatrelay - OpenTelemetry Tracing

Spans for incoming relay requests and outgoing upstream calls, with W3C
trace context propagation (traceparent header).

Spans are exported to the console when OTEL_CONSOLE_EXPORT=true; otherwise
they are only used for correlation IDs in logs and response headers.

Usage:
    from chatrelay.observability.tracing import get_tracing_manager

    tracing = get_tracing_manager()
    with tracing.start_client_span("upstream.chat", {"ai.model": "gpt-4o"}) as span:
        ...
"""

import os
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Optional

from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.propagate import extract, set_global_textmap
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.trace import SpanKind
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator


@dataclass
class TraceContext:
    """Trace identifiers of a span, hex encoded."""
    trace_id: str
    span_id: str
    trace_flags: int = 1

    @classmethod
    def from_span(cls, span: trace.Span) -> "TraceContext":
        ctx = span.get_span_context()
        return cls(
            trace_id=format(ctx.trace_id, "032x"),
            span_id=format(ctx.span_id, "016x"),
            trace_flags=ctx.trace_flags,
        )


class TracingManager:
    """Owns the tracer provider and hands out spans."""

    def __init__(
        self,
        service_name: str = "chatrelay",
        service_version: str = "1.0.0",
        console_export: bool = False,
    ):
        self.service_name = service_name
        self.service_version = service_version

        resource = Resource.create({
            SERVICE_NAME: service_name,
            SERVICE_VERSION: service_version,
        })
        self.provider = TracerProvider(resource=resource)

        if console_export:
            self.provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

        set_global_textmap(TraceContextTextMapPropagator())

        # Spans come from our own provider, so re-initializing in tests works
        # even though the global provider can only be set once.
        self.tracer = self.provider.get_tracer(service_name, service_version)

    def extract_context(self, headers: Dict[str, str]) -> Context:
        """Parent context from incoming HTTP headers."""
        return extract({k.lower(): v for k, v in headers.items()})

    def start_server_span(
        self,
        name: str,
        headers: Dict[str, str],
        attributes: Optional[Dict[str, Any]] = None,
    ):
        """Server span whose parent is taken from the request headers."""
        return self.tracer.start_as_current_span(
            name,
            kind=SpanKind.SERVER,
            attributes=attributes,
            context=self.extract_context(headers),
        )

    def start_client_span(self, name: str, attributes: Optional[Dict[str, Any]] = None):
        """Client span for calls to the upstream."""
        return self.tracer.start_as_current_span(
            name,
            kind=SpanKind.CLIENT,
            attributes=attributes,
        )

    def shutdown(self):
        self.provider.shutdown()


_tracing_instance: Optional[TracingManager] = None


def setup_tracing(
    service_name: str = "chatrelay",
    service_version: str = "1.0.0",
    console_export: bool = False,
) -> TracingManager:
    """
    Setup tracing. Call once at application startup.

    OTEL_CONSOLE_EXPORT=true turns console export on.
    """
    global _tracing_instance

    if os.getenv("OTEL_CONSOLE_EXPORT", "").lower() == "true":
        console_export = True

    _tracing_instance = TracingManager(
        service_name=service_name,
        service_version=service_version,
        console_export=console_export,
    )
    return _tracing_instance


def get_tracing_manager() -> TracingManager:
    """Get the tracing manager, creating a default one on first use."""
    global _tracing_instance
    if _tracing_instance is None:
        _tracing_instance = TracingManager()
    return _tracing_instance


@contextmanager
def trace_upstream_call(base_url: str, model: str, stream: bool):
    """
    Client span around one chat-completion call.

    Usage:
        with trace_upstream_call(base_url, "gpt-4o", stream=True) as span:
            response = await client.send(...)
            span.set_attribute("http.status_code", response.status_code)
    """
    tracing = get_tracing_manager()

    with tracing.start_client_span(
        name="upstream.chat_completions",
        attributes={
            "ai.base_url": base_url,
            "ai.model": model,
            "ai.stream": stream,
        },
    ) as span:
        yield span
