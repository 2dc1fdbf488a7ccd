"""
chatrelay - API Layer

HTTP surface of the relay: request models, dependencies and routes.
"""

from .models import (
    RoleEnum,
    MessageInput,
    RelayRequestBody,
    HealthResponse,
)
from .dependencies import get_relay, set_relay_getter
from .routes import chat_router

__all__ = [
    # Models
    "RoleEnum",
    "MessageInput",
    "RelayRequestBody",
    "HealthResponse",
    # Dependencies
    "get_relay",
    "set_relay_getter",
    # Routers
    "chat_router",
]
