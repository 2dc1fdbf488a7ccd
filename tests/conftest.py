"""
chatrelay - Pytest Configuration

Configures:
- Fake upstreams built on httpx.MockTransport
- Fresh metrics and log context per test
"""

import json
from typing import Any, Callable, Dict, Iterable, List, Optional

import httpx
import pytest

from chatrelay.adapters.openai_adapter import ProviderRelay
from chatrelay.core.models import Message, RelayRequest
from chatrelay.observability.logging import LogContext
from chatrelay.observability.metrics import reset_metrics


@pytest.fixture(autouse=True)
def fresh_observability_state():
    """Each test starts with an empty metrics registry and no log context."""
    reset_metrics()
    LogContext.clear()
    yield
    reset_metrics()
    LogContext.clear()


# ============================================================
# Event-stream helpers
# ============================================================

def sse_frame(payload: Any) -> str:
    """One `data:` frame; dict payloads are JSON encoded."""
    data = payload if isinstance(payload, str) else json.dumps(payload)
    return f"data: {data}\n\n"


def content_chunk(text: str) -> Dict[str, Any]:
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion.chunk",
        "choices": [{"index": 0, "delta": {"content": text}, "finish_reason": None}],
    }


def usage_chunk(prompt: int, completion: int) -> Dict[str, Any]:
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion.chunk",
        "choices": [],
        "usage": {
            "prompt_tokens": prompt,
            "completion_tokens": completion,
            "total_tokens": prompt + completion,
        },
    }


def completion_body(content: str, usage: Optional[Dict[str, int]] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "choices": [
            {"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}
        ],
    }
    if usage is not None:
        body["usage"] = usage
    return body


class ChunkedStream(httpx.AsyncByteStream):
    """Response body delivered in exactly the given chunks."""

    def __init__(self, chunks: Iterable[bytes], fail_after: Optional[int] = None):
        self.chunks = list(chunks)
        self.fail_after = fail_after
        self.closed = False

    async def __aiter__(self):
        for index, chunk in enumerate(self.chunks):
            if self.fail_after is not None and index >= self.fail_after:
                raise httpx.ReadError("connection reset by peer")
            yield chunk

    async def aclose(self):
        self.closed = True


async def aiter_chunks(chunks: Iterable[bytes]):
    for chunk in chunks:
        yield chunk


# ============================================================
# Fake upstream
# ============================================================

class FakeUpstream:
    """
    Records every request and answers with a scripted handler.

    Usage:
        upstream = FakeUpstream(lambda request: httpx.Response(200, json={...}))
        relay = upstream.relay()
    """

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.handler = handler
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    @property
    def last_json(self) -> Dict[str, Any]:
        return json.loads(self.requests[-1].content)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))

    def relay(self) -> ProviderRelay:
        return ProviderRelay(client=self.client())


@pytest.fixture
def relay_request():
    """Factory for RelayRequest with sensible defaults."""
    def _make(**overrides) -> RelayRequest:
        fields: Dict[str, Any] = {
            "messages": [Message.user("Hello")],
            "model": "gpt-4o",
            "api_key": "sk-test",
            "base_url": "https://upstream.test/v1",
        }
        fields.update(overrides)
        return RelayRequest(**fields)
    return _make
