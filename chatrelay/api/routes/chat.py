"""
chatrelay - Chat Relay Endpoint

POST /api/chat forwards one chat-completion call to the upstream named in
the body. Buffered calls return the upstream JSON unchanged; streamed calls
proxy the upstream event stream byte for byte.
"""

from typing import AsyncIterator

import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse

from ...adapters.base import BaseAdapter, ByteStream
from ...core.errors import (
    MissingCredentialError,
    ReaderUnavailableError,
    StreamInterruptedError,
    classify_transport_error,
    create_stream_error_chunk,
)
from ...observability.logging import get_logger
from ...observability.metrics import get_metrics
from ...observability.middleware import get_request_id, set_model_info
from ..dependencies import get_relay
from ..models import RelayRequestBody

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


@router.post("/chat")
async def relay_chat(
    request: Request,
    body: RelayRequestBody,
    relay: BaseAdapter = Depends(get_relay),
):
    """
    Relay a chat completion.

    **Body:** `{messages, model, baseUrl?, apiKey, parameters?, stream?}`

    **Streaming:**
    Set `stream: true` to receive the upstream's Server-Sent Events as-is.
    """
    request_id = get_request_id(request)
    set_model_info(request, body.model)

    if not body.api_key:
        raise MissingCredentialError(request_id)

    result = await relay.send(body.to_relay_request(), request_id)

    if isinstance(result, ByteStream):
        return await _stream_response(result, request_id)

    return JSONResponse(content=result, headers={"X-Request-Id": request_id})


async def _stream_response(stream: ByteStream, request_id: str) -> StreamingResponse:
    """Answer 200 only once a reader is available."""
    try:
        reader = stream.open_reader()
    except ReaderUnavailableError:
        await stream.aclose()
        raise

    return StreamingResponse(
        _proxy_stream(stream, reader, request_id),
        media_type="text/event-stream",
        headers={**STREAM_HEADERS, "X-Request-Id": request_id},
    )


async def _proxy_stream(
    stream: ByteStream,
    reader: AsyncIterator[bytes],
    request_id: str,
) -> AsyncIterator[bytes]:
    """
    Upstream bytes, unmodified.

    A transport failure after the 200 was sent becomes one in-band error
    frame plus the terminator. The upstream response is always closed,
    including when the client disconnects.
    """
    metrics = get_metrics()
    with metrics.track_active_stream():
        try:
            async for chunk in reader:
                yield chunk
        except httpx.HTTPError as e:
            error = classify_transport_error(e, request_id)
            logger.warning(
                "Upstream stream failed after response started",
                error=error.message,
                error_code=error.error.code,
            )
            interrupted = StreamInterruptedError(error.message, request_id=request_id)
            yield create_stream_error_chunk(interrupted).encode("utf-8")
        finally:
            await stream.aclose()
