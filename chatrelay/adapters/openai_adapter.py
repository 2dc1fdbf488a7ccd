"""
chatrelay - OpenAI-Compatible Provider Relay

Forwards a RelayRequest to `<baseUrl>/chat/completions` of any
OpenAI-compatible backend, buffered or streamed.
"""

from typing import Any, Dict, Optional

import httpx

from .base import AdapterConfig, BaseAdapter, ByteStream, RelayResult
from ..config import get_default_base_url
from ..core.content import normalize_messages
from ..core.errors import (
    MissingCredentialError,
    TransportError,
    UpstreamHttpError,
    is_stream_shaped,
    classify_transport_error,
    extract_error_message,
    synthesize_status_message,
)
from ..core.models import RelayRequest, Usage
from ..observability.logging import TimedOperation, get_logger
from ..observability.metrics import get_metrics
from ..observability.tracing import trace_upstream_call

logger = get_logger(__name__)

# Upper bound on how much of a streamed error body is read for its message
MAX_ERROR_BODY_BYTES = 64 * 1024


def resolve_base_url(base_url: Optional[str], default: Optional[str] = None) -> str:
    """Upstream root with a single trailing slash stripped."""
    base = base_url or default or get_default_base_url()
    if base.endswith("/"):
        base = base[:-1]
    return base


def build_chat_payload(request: RelayRequest) -> Dict[str, Any]:
    """
    Upstream request body.

    Parameters are spread last, after `stream_options`; unset parameters
    never appear.
    """
    payload: Dict[str, Any] = {
        "model": request.model,
        "messages": normalize_messages(request.messages),
        "stream": request.stream,
    }
    if request.stream:
        payload["stream_options"] = {"include_usage": True}
    payload.update(
        (key, value) for key, value in request.parameters.items() if value is not None
    )
    return payload


class ProviderRelay(BaseAdapter):
    """
    Relay for OpenAI-compatible chat-completion APIs.

    Supports:
    - Buffered calls (the decoded JSON body is returned opaquely)
    - Streaming calls (an open ByteStream is returned, never interpreted)
    - Per-request base URL and API key
    """

    def __init__(
        self,
        config: Optional[AdapterConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(config)
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=self.config.timeout)

    def build_headers(self, api_key: str, request_id: str = "") -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        if request_id:
            headers["X-Request-ID"] = request_id
        return headers

    async def send(self, request: RelayRequest, request_id: str = "") -> RelayResult:
        """Forward one chat-completion call, buffered or streamed."""
        if not request.api_key:
            raise MissingCredentialError(request_id)

        base_url = resolve_base_url(request.base_url, self.config.base_url)
        url = f"{base_url}/chat/completions"
        payload = build_chat_payload(request)
        headers = self.build_headers(request.api_key, request_id)

        logger.debug(
            "Relaying chat completion",
            base_url=base_url,
            model=request.model,
            stream=request.stream,
            message_count=len(request.messages),
            parameter_names=sorted(request.parameters),
        )

        with trace_upstream_call(base_url, request.model, request.stream) as span:
            async with TimedOperation(
                "upstream_chat_completion",
                logger,
                extra={"model": request.model, "stream": request.stream},
            ):
                if request.stream:
                    stream = await self._send_streaming(url, payload, headers, request_id)
                    span.set_attribute("http.status_code", stream.status_code)
                    return stream

                data = await self._send_buffered(url, payload, headers, request_id)

        self._record_usage(request.model, data)
        return data

    def _record_usage(self, model: str, data: Any):
        """Token metrics for a buffered body; the body itself is returned as is."""
        usage = data.get("usage") if isinstance(data, dict) else None
        if not isinstance(usage, dict):
            return
        try:
            parsed = Usage.from_dict(usage)
        except ValueError as e:
            logger.warning("Skipping token metrics for invalid usage", model=model, error=str(e))
            return
        get_metrics().record_tokens(
            model=model,
            prompt_tokens=parsed.prompt_tokens,
            completion_tokens=parsed.completion_tokens,
        )

    async def _send_buffered(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Dict[str, str],
        request_id: str,
    ) -> Dict[str, Any]:
        try:
            response = await self.client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise classify_transport_error(e, request_id)

        if not response.is_success:
            raise UpstreamHttpError(
                response.status_code,
                extract_error_message(
                    response.content,
                    response.headers.get("content-type", ""),
                    response.status_code,
                    response.reason_phrase,
                    fallback=f"Request failed with status code {response.status_code}",
                ),
                request_id,
            )

        try:
            return response.json()
        except ValueError:
            raise TransportError("Upstream returned a body that is not valid JSON", request_id=request_id)

    async def _send_streaming(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Dict[str, str],
        request_id: str,
    ) -> ByteStream:
        upstream_request = self.client.build_request("POST", url, json=payload, headers=headers)
        try:
            response = await self.client.send(upstream_request, stream=True)
        except httpx.HTTPError as e:
            raise classify_transport_error(e, request_id)

        if response.is_success:
            return ByteStream(response, request_id)

        try:
            message = await self._read_error_message(response)
        finally:
            await response.aclose()
        raise UpstreamHttpError(response.status_code, message, request_id)

    async def _read_error_message(self, response: httpx.Response) -> str:
        """Message for a failed streamed call; stream-shaped bodies are not read."""
        content_type = response.headers.get("content-type", "")
        if is_stream_shaped(content_type):
            return synthesize_status_message(response.status_code, response.reason_phrase)

        body = b""
        try:
            async for chunk in response.aiter_bytes():
                body += chunk
                if len(body) >= MAX_ERROR_BODY_BYTES:
                    break
        except httpx.HTTPError:
            return synthesize_status_message(response.status_code, response.reason_phrase)

        return extract_error_message(
            body[:MAX_ERROR_BODY_BYTES],
            content_type,
            response.status_code,
            response.reason_phrase,
            fallback=f"Request failed with status code {response.status_code}",
        )

    async def close(self):
        if self._owns_client:
            await self.client.aclose()
