"""
chatrelay - Observability Middleware

One middleware for metrics, tracing and request logging. Every response
carries X-Request-Id, X-Trace-Id and X-Span-Id.

Usage:
    from chatrelay.observability import setup_observability, ObservabilityMiddleware

    setup_observability(service_name="chatrelay")
    app.add_middleware(ObservabilityMiddleware)
"""

import os
import time
import uuid
from typing import Any, Dict, Optional

from fastapi import Request, Response
from opentelemetry.trace import Status, StatusCode
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from .logging import LogContext, get_logger, setup_logging
from .metrics import get_metrics, setup_metrics
from .tracing import TraceContext, get_tracing_manager, setup_tracing


def new_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:24]}"


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """
    Metrics, tracing and structured logging for every relay request.

    The request ID is taken from X-Request-Id when the caller sends one.
    """

    EXCLUDE_PATHS = {"/health", "/metrics", "/openapi.json", "/docs", "/redoc"}

    def __init__(
        self,
        app: ASGIApp,
        service_name: str = "chatrelay",
        exclude_paths: Optional[set] = None,
    ):
        super().__init__(app)
        self.service_name = service_name
        self.exclude_paths = exclude_paths or self.EXCLUDE_PATHS
        self.logger = get_logger("chatrelay.observability.middleware")

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        if request.url.path in self.exclude_paths:
            return await call_next(request)

        metrics = get_metrics()
        tracing = get_tracing_manager()

        headers = dict(request.headers)
        request_id = headers.get("x-request-id", "") or new_request_id()

        start_time = time.perf_counter()

        with tracing.start_server_span(
            name=f"{request.method} {request.url.path}",
            headers=headers,
            attributes={
                "http.method": request.method,
                "http.route": request.url.path,
                "chatrelay.request_id": request_id,
            },
        ) as span:
            trace_ctx = TraceContext.from_span(span)

            log_ctx = LogContext(
                request_id=request_id,
                trace_id=trace_ctx.trace_id,
                span_id=trace_ctx.span_id,
                endpoint=request.url.path,
            )
            LogContext.set_current(log_ctx)

            request.state.request_id = request_id
            request.state.trace_id = trace_ctx.trace_id
            request.state.span_id = trace_ctx.span_id
            request.state.log_context = log_ctx

            try:
                response = await call_next(request)
                duration_seconds = time.perf_counter() - start_time

                streaming = response.headers.get("content-type", "").startswith("text/event-stream")
                span.set_attribute("http.status_code", response.status_code)
                if response.status_code >= 500:
                    span.set_status(Status(StatusCode.ERROR, f"HTTP {response.status_code}"))
                elif response.status_code >= 400:
                    span.set_attribute("http.error", True)
                else:
                    span.set_status(Status(StatusCode.OK))

                error_code = None
                if response.status_code >= 400:
                    error_code = response.headers.get("x-error-code", f"http_{response.status_code}")

                metrics.record_request(
                    mode="stream" if streaming else "buffered",
                    status_code=response.status_code,
                    duration_seconds=duration_seconds,
                    error_code=error_code,
                )

                self._log_request(request, response, duration_seconds * 1000, log_ctx.model)

                response.headers["X-Request-Id"] = request_id
                response.headers["X-Trace-Id"] = trace_ctx.trace_id
                response.headers["X-Span-Id"] = trace_ctx.span_id
                return response

            except Exception as e:
                duration_seconds = time.perf_counter() - start_time
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))

                metrics.record_request(
                    mode="buffered",
                    status_code=500,
                    duration_seconds=duration_seconds,
                    error_code=type(e).__name__,
                )
                raise

            finally:
                LogContext.clear()

    def _log_request(self, request: Request, response: Response, duration_ms: float, model: str):
        status_code = response.status_code
        log_data = {
            "method": request.method,
            "path": request.url.path,
            "status_code": status_code,
            "duration_ms": round(duration_ms, 2),
            "model": model or "unknown",
            "client_ip": request.client.host if request.client else None,
        }

        if status_code >= 500:
            self.logger.error("Request completed with server error", **log_data)
        elif status_code >= 400:
            self.logger.warning("Request completed with client error", **log_data)
        else:
            self.logger.info("Request completed", **log_data)


_observability_initialized = False


def setup_observability(
    service_name: str = "chatrelay",
    service_version: str = "1.0.0",
    log_level: str = "INFO",
    metrics_enabled: bool = True,
    tracing_enabled: bool = True,
    logging_enabled: bool = True,
) -> Dict[str, Any]:
    """
    Setup logging, metrics and tracing. Safe to call multiple times.

    LOG_LEVEL and LOG_FORMAT from the environment take precedence.
    """
    global _observability_initialized

    result: Dict[str, Any] = {}
    log_level = os.getenv("LOG_LEVEL", log_level)

    # Logging first, the other components may log
    if logging_enabled:
        json_output = os.getenv("LOG_FORMAT", "json").lower() == "json"
        setup_logging(level=log_level, json_output=json_output)
        result["logging"] = True

    if metrics_enabled:
        result["metrics"] = setup_metrics()

    if tracing_enabled:
        result["tracing"] = setup_tracing(
            service_name=service_name,
            service_version=service_version,
        )

    if not _observability_initialized:
        get_logger("chatrelay.observability").info(
            "Observability initialized",
            service_name=service_name,
            service_version=service_version,
            metrics_enabled=metrics_enabled,
            tracing_enabled=tracing_enabled,
        )
        _observability_initialized = True

    return result


def get_request_id(request: Request) -> str:
    """Request ID assigned by the middleware, or a fresh one."""
    return getattr(request.state, "request_id", "") or new_request_id()


def set_model_info(request: Request, model: str):
    """Attach the requested model to the log context."""
    log_ctx = getattr(request.state, "log_context", None)
    if log_ctx:
        log_ctx.model = model
