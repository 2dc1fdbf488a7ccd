"""
chatrelay - Prometheus Metrics

Metrics exposed:
- chatrelay_requests_total: relay calls by mode, status and error code
- chatrelay_request_duration_seconds: time until the upstream answered
- chatrelay_stream_events_total: decoded stream events by type
- chatrelay_stream_parse_errors_total: malformed event lines skipped
- chatrelay_tokens_total: tokens reported by the upstream (prompt/completion)
- chatrelay_active_streams: streams currently being proxied

Usage:
    from chatrelay.observability.metrics import get_metrics

    metrics = get_metrics()
    metrics.record_request(mode="buffered", status_code=200, duration_seconds=1.2)
"""

from typing import Optional

from fastapi import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)


class MetricsCollector:
    """Central metrics collector; each instance owns its registry."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.info = Info(
            "chatrelay",
            "chatrelay service information",
            registry=self.registry,
        )
        self.info.info({"version": "1.0.0", "service": "chatrelay"})

        self.requests_total = Counter(
            "chatrelay_requests_total",
            "Total number of relay calls",
            labelnames=["mode", "status", "error_code"],
            registry=self.registry,
        )

        # Upstream calls range from sub-second to minutes
        self.request_duration = Histogram(
            "chatrelay_request_duration_seconds",
            "Time until the upstream answered",
            labelnames=["mode"],
            buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 25.0, 50.0, 100.0, float("inf")),
            registry=self.registry,
        )

        self.stream_events = Counter(
            "chatrelay_stream_events_total",
            "Decoded stream events",
            labelnames=["type"],
            registry=self.registry,
        )

        self.stream_parse_errors = Counter(
            "chatrelay_stream_parse_errors_total",
            "Malformed stream event lines skipped",
            registry=self.registry,
        )

        self.tokens_total = Counter(
            "chatrelay_tokens_total",
            "Tokens reported by the upstream",
            labelnames=["model", "type"],
            registry=self.registry,
        )

        self.active_streams = Gauge(
            "chatrelay_active_streams",
            "Streams currently being proxied",
            registry=self.registry,
        )

    def record_request(
        self,
        mode: str,
        status_code: int,
        duration_seconds: float,
        error_code: Optional[str] = None,
    ):
        """Record a completed relay call."""
        self.requests_total.labels(
            mode=mode,
            status=str(status_code),
            error_code=error_code or "none",
        ).inc()
        self.request_duration.labels(mode=mode).observe(duration_seconds)

    def record_stream_event(self, event_type: str):
        self.stream_events.labels(type=event_type).inc()

    def record_parse_error(self):
        self.stream_parse_errors.inc()

    def record_tokens(self, model: str, prompt_tokens: int, completion_tokens: int):
        """Record token usage."""
        self.tokens_total.labels(model=model, type="prompt").inc(prompt_tokens)
        self.tokens_total.labels(model=model, type="completion").inc(completion_tokens)

    def track_active_stream(self) -> "ActiveStreamTracker":
        return ActiveStreamTracker(self)


class ActiveStreamTracker:
    """Context manager for the active streams gauge."""

    def __init__(self, collector: MetricsCollector):
        self.collector = collector

    def __enter__(self):
        self.collector.active_streams.inc()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.collector.active_streams.dec()


_metrics_instance: Optional[MetricsCollector] = None


def setup_metrics(registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """
    Setup metrics collection.

    Safe to call multiple times; a new registry replaces the collector.
    """
    global _metrics_instance

    if _metrics_instance is not None and (registry is None or _metrics_instance.registry is registry):
        return _metrics_instance

    _metrics_instance = MetricsCollector(registry)
    return _metrics_instance


def get_metrics() -> MetricsCollector:
    """Get the metrics collector, creating a default one on first use."""
    global _metrics_instance
    if _metrics_instance is None:
        _metrics_instance = MetricsCollector()
    return _metrics_instance


def reset_metrics():
    """Drop the collector (for testing)."""
    global _metrics_instance
    _metrics_instance = None


def metrics_endpoint() -> Response:
    """Prometheus text exposition of the current collector."""
    content = generate_latest(get_metrics().registry)
    return Response(content=content, media_type=CONTENT_TYPE_LATEST)
