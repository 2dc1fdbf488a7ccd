"""
chatrelay - API Dependencies

Shared dependencies for FastAPI routes.
"""

from typing import Callable, Optional

from ..adapters.base import BaseAdapter
from ..core.errors import ErrorDetails, ErrorKind, RelayException


# Set by server.py at startup to avoid circular imports
_relay_getter: Optional[Callable[[], Optional[BaseAdapter]]] = None


def set_relay_getter(getter: Callable[[], Optional[BaseAdapter]]):
    """Set the function that returns the relay instance."""
    global _relay_getter
    _relay_getter = getter


def get_relay() -> BaseAdapter:
    """
    The relay used by the routes.

    Tests replace it through `app.dependency_overrides[get_relay]`.
    """
    relay = _relay_getter() if _relay_getter is not None else None
    if relay is None:
        raise RelayException(
            ErrorDetails(
                code="service_unavailable",
                message="Relay not initialized. Server may be starting up.",
                kind=ErrorKind.TRANSPORT_ERROR,
            ),
            status_code=503
        )
    return relay
