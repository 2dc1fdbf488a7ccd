"""
chatrelay - Relay Endpoint Client

Sends a RelayRequest to a running relay (POST /api/chat) instead of the
upstream directly. Failures come back in the same taxonomy as the
ProviderRelay raises them.
"""

import json
from typing import Optional

import httpx

from .base import AdapterConfig, BaseAdapter, ByteStream, RelayResult
from ..core.errors import (
    ErrorKind,
    MissingCredentialError,
    ReaderUnavailableError,
    TransportError,
    UpstreamHttpError,
    classify_transport_error,
    synthesize_status_message,
)
from ..core.models import RelayRequest, relay_request_to_dict
from ..observability.logging import get_logger

logger = get_logger(__name__)

DEFAULT_RELAY_URL = "http://localhost:8000/api/chat"


def _relay_error_message(body: bytes, status: int, reason: str) -> str:
    """The relay answers errors as {"error": "<message>"}."""
    try:
        data = json.loads(body.decode("utf-8")) if body else None
    except (UnicodeDecodeError, ValueError):
        return synthesize_status_message(status, reason)

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, str) and error:
            return error
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
    return synthesize_status_message(status, reason)


class RelayClient(BaseAdapter):
    """Client for the relay's own HTTP endpoint."""

    def __init__(
        self,
        endpoint: str = DEFAULT_RELAY_URL,
        config: Optional[AdapterConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(config)
        self.endpoint = endpoint
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=self.config.timeout)

    async def send(self, request: RelayRequest, request_id: str = "") -> RelayResult:
        body = relay_request_to_dict(request)
        headers = {"Content-Type": "application/json"}
        if request_id:
            headers["X-Request-Id"] = request_id

        http_request = self.client.build_request("POST", self.endpoint, json=body, headers=headers)
        try:
            response = await self.client.send(http_request, stream=request.stream)
        except httpx.HTTPError as e:
            raise classify_transport_error(e, request_id)

        if not response.is_success:
            try:
                error_body = await response.aread()
            except httpx.HTTPError:
                error_body = b""
            finally:
                await response.aclose()
            raise self._classify(response, error_body, request_id)

        if request.stream:
            return ByteStream(response, request_id or response.headers.get("x-request-id", ""))

        try:
            return response.json()
        except ValueError:
            raise TransportError("Relay returned a body that is not valid JSON", request_id=request_id)

    def _classify(self, response: httpx.Response, body: bytes, request_id: str):
        error_code = response.headers.get("x-error-code", "")
        request_id = request_id or response.headers.get("x-request-id", "")

        if response.status_code == 400 and error_code == ErrorKind.MISSING_CREDENTIAL.value:
            return MissingCredentialError(request_id)

        message = _relay_error_message(body, response.status_code, response.reason_phrase)

        # The relay could not reach the upstream at all
        if error_code in ("timeout", ErrorKind.TRANSPORT_ERROR.value):
            return TransportError(message, timed_out=error_code == "timeout", request_id=request_id)
        if error_code == ErrorKind.READER_UNAVAILABLE.value:
            return ReaderUnavailableError(message, request_id=request_id)

        logger.debug(
            "Relay call failed",
            status_code=response.status_code,
            error_code=error_code or "none",
        )
        return UpstreamHttpError(response.status_code, message, request_id)

    async def close(self):
        if self._owns_client:
            await self.client.aclose()

