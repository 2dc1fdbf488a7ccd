"""
chatrelay - Adapter Base

Both the Provider Relay (talks to the upstream chat-completion API) and the
relay-endpoint client (talks to POST /api/chat) implement this interface, so
the chat service can drive either one.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional, Union

import httpx

from ..config import DEFAULT_UPSTREAM_TIMEOUT
from ..core.errors import ReaderUnavailableError
from ..core.models import RelayRequest


@dataclass
class AdapterConfig:
    """Configuration for an adapter."""
    base_url: Optional[str] = None
    timeout: float = DEFAULT_UPSTREAM_TIMEOUT


class ByteStream:
    """
    An open streamed response handed from the relay to its consumer.

    The body is not buffered. Call `open_reader()` once to iterate the raw
    bytes, and `aclose()` (or use `async with`) to release the connection.
    """

    def __init__(self, response: httpx.Response, request_id: str = ""):
        self.response = response
        self.request_id = request_id
        self._reader_opened = False

    @property
    def status_code(self) -> int:
        return self.response.status_code

    @property
    def headers(self) -> httpx.Headers:
        return self.response.headers

    @property
    def media_type(self) -> str:
        return self.response.headers.get("content-type", "text/event-stream")

    def _body_readable(self) -> bool:
        try:
            self.response.content
            return True
        except httpx.ResponseNotRead:
            return not (self.response.is_stream_consumed or self.response.is_closed)

    def open_reader(self) -> AsyncIterator[bytes]:
        """
        Raw body chunks, at whatever boundaries the upstream sends them.

        Raises:
            ReaderUnavailableError: the body was already consumed or closed.
        """
        if self._reader_opened or not self._body_readable():
            raise ReaderUnavailableError(request_id=self.request_id)
        self._reader_opened = True
        return self.response.aiter_bytes()

    async def aclose(self):
        await self.response.aclose()

    async def __aenter__(self) -> "ByteStream":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()


RelayResult = Union[Dict[str, Any], ByteStream]


class BaseAdapter(ABC):
    """
    Abstract base class for chat-completion adapters.

    An adapter is responsible for:
    1. Building the HTTP request for a RelayRequest
    2. Returning the buffered JSON body, or an open ByteStream when
       `request.stream` is set
    3. Classifying every failure into the chatrelay error taxonomy
    """

    def __init__(self, config: Optional[AdapterConfig] = None):
        self.config = config or AdapterConfig()

    @abstractmethod
    async def send(self, request: RelayRequest, request_id: str = "") -> RelayResult:
        """
        Forward one chat-completion call.

        Args:
            request: The call to forward
            request_id: Request ID for error tracking

        Returns:
            The decoded JSON body (buffered) or an open ByteStream (streaming)
        """
        pass

    async def close(self):
        """Release pooled connections."""
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
