"""
chatrelay Observability Module

- Prometheus metrics
- OpenTelemetry tracing with W3C context propagation
- Structured JSON logging with context injection

Usage:
    from chatrelay.observability import setup_observability, get_logger, get_metrics

    setup_observability(service_name="chatrelay")

    logger = get_logger(__name__)
    metrics = get_metrics()
"""

from .metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
    reset_metrics,
    metrics_endpoint,
)
from .tracing import (
    TracingManager,
    TraceContext,
    get_tracing_manager,
    setup_tracing,
    trace_upstream_call,
)
from .logging import (
    StructuredLogger,
    TimedOperation,
    get_logger,
    setup_logging,
    LogContext,
)
from .middleware import (
    ObservabilityMiddleware,
    setup_observability,
    get_request_id,
    set_model_info,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    "get_metrics",
    "setup_metrics",
    "reset_metrics",
    "metrics_endpoint",
    # Tracing
    "TracingManager",
    "TraceContext",
    "get_tracing_manager",
    "setup_tracing",
    "trace_upstream_call",
    # Logging
    "StructuredLogger",
    "TimedOperation",
    "get_logger",
    "setup_logging",
    "LogContext",
    # Combined
    "ObservabilityMiddleware",
    "setup_observability",
    "get_request_id",
    "set_model_info",
]
