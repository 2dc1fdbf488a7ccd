"""
chatrelay - API Server

FastAPI application exposing the chat relay.

Endpoints:
- POST /api/chat: relay a chat completion, buffered or streamed
- GET /health: liveness
- GET /metrics: Prometheus metrics

Run with `python -m chatrelay.server`.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .adapters.base import AdapterConfig
from .adapters.openai_adapter import ProviderRelay
from .api import chat_router
from .api import dependencies as api_deps
from .api.models import HealthResponse
from .config import (
    get_cors_allowed_origins,
    get_default_base_url,
    get_server_host,
    get_server_port,
    get_upstream_timeout,
)
from .core.errors import RelayException
from .observability import (
    ObservabilityMiddleware,
    get_logger,
    get_tracing_manager,
    metrics_endpoint,
    setup_observability,
)
from .observability.middleware import new_request_id


# ============================================================
# Global state
# ============================================================

relay_instance: Optional[ProviderRelay] = None


def get_relay_instance() -> ProviderRelay:
    """The process-wide relay, created on first use."""
    global relay_instance
    if relay_instance is None:
        relay_instance = ProviderRelay(
            AdapterConfig(
                base_url=get_default_base_url(),
                timeout=get_upstream_timeout(),
            )
        )
    return relay_instance


api_deps.set_relay_getter(get_relay_instance)


# ============================================================
# Lifespan management
# ============================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - startup and shutdown."""
    global relay_instance

    setup_observability(service_name="chatrelay", service_version=__version__)
    logger = get_logger("chatrelay.server")

    relay = get_relay_instance()
    logger.info(
        "chatrelay starting",
        default_base_url=get_default_base_url(),
        upstream_timeout=relay.config.timeout,
    )

    yield

    await relay.close()
    get_tracing_manager().shutdown()
    relay_instance = None
    logger.info("chatrelay stopped")


# ============================================================
# FastAPI App
# ============================================================

app = FastAPI(
    title="chatrelay",
    description="Relay for OpenAI-compatible chat-completion APIs",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

# First added = innermost
app.add_middleware(ObservabilityMiddleware, service_name="chatrelay")

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-Id", "X-Error-Code"],
)

app.include_router(chat_router)


# ============================================================
# Core Endpoints
# ============================================================

@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(status="healthy", version=__version__)


@app.get("/metrics")
async def prometheus_metrics():
    """Prometheus metrics in text format."""
    return metrics_endpoint()


# ============================================================
# Error handlers
# ============================================================

def _request_id(request: Request, fallback: str = "") -> str:
    return getattr(request.state, "request_id", "") or fallback or new_request_id()


@app.exception_handler(RelayException)
async def relay_exception_handler(request: Request, exc: RelayException):
    """Classified errors answer `{"error": "<message>"}` with the error status."""
    request_id = _request_id(request, exc.error.request_id)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message},
        headers={
            "X-Request-Id": request_id,
            "X-Error-Code": exc.error.code,
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    request_id = _request_id(request)
    get_logger("chatrelay.server").error(
        "Unhandled exception",
        exc_info=exc,
        error_type=type(exc).__name__,
        request_id=request_id,
    )
    return JSONResponse(
        status_code=500,
        content={"error": "Internal Server Error"},
        headers={
            "X-Request-Id": request_id,
            "X-Error-Code": "internal_error",
        }
    )


# ============================================================
# Run server
# ============================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "chatrelay.server:app",
        host=get_server_host(),
        port=get_server_port(),
    )
