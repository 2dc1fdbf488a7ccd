"""
chatrelay - API Layer Tests

Comprehensive tests for:
- Request body model
- API dependencies
- POST /api/chat buffered, streamed and failing
- Health and metrics endpoints
"""

import logging
from typing import List

import httpx
import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError

from chatrelay.adapters.base import BaseAdapter, ByteStream
from chatrelay.core.errors import RelayException
from chatrelay.core.models import FileRefPart, RawPart, Role
from chatrelay.streaming.decoder import ContentDelta, Done, StreamDecoder, StreamFailure

from conftest import ChunkedStream, FakeUpstream, completion_body, content_chunk, sse_frame


HELLO_FRAMES: List[bytes] = [
    sse_frame(content_chunk("Hel")).encode("utf-8"),
    sse_frame(content_chunk("lo")).encode("utf-8"),
    b"data: [DONE]\n\n",
]


def chat_body(**overrides):
    body = {
        "messages": [{"role": "user", "content": "Hello"}],
        "model": "gpt-4o",
        "baseUrl": "https://upstream.test/v1",
        "apiKey": "sk-test",
    }
    body.update(overrides)
    return body


@pytest.fixture
def upstream():
    return FakeUpstream(lambda request: httpx.Response(200, json=completion_body("Hi there")))


@pytest.fixture
def client(upstream):
    from chatrelay.api.dependencies import get_relay
    from chatrelay.server import app

    relay = upstream.relay()
    app.dependency_overrides[get_relay] = lambda: relay
    yield TestClient(app)
    app.dependency_overrides.clear()


def client_for(adapter: BaseAdapter) -> TestClient:
    from chatrelay.api.dependencies import get_relay
    from chatrelay.server import app

    app.dependency_overrides[get_relay] = lambda: adapter
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture(autouse=True)
def clear_overrides():
    yield
    from chatrelay.server import app
    app.dependency_overrides.clear()


# ============================================================
# Test API Models
# ============================================================

class TestRelayRequestBody:
    """Tests for the POST /api/chat body."""

    def test_camel_case_fields(self):
        from chatrelay.api.models import RelayRequestBody

        body = RelayRequestBody.model_validate(chat_body(parameters={"temperature": 0.5}))

        assert body.base_url == "https://upstream.test/v1"
        assert body.api_key == "sk-test"
        assert body.stream is False

    def test_default_model(self, monkeypatch):
        from chatrelay.api.models import RelayRequestBody

        monkeypatch.delenv("RELAY_DEFAULT_MODEL", raising=False)
        data = chat_body()
        del data["model"]

        assert RelayRequestBody.model_validate(data).model == "gpt-3.5-turbo"

    def test_messages_required(self):
        from chatrelay.api.models import RelayRequestBody

        with pytest.raises(ValidationError):
            RelayRequestBody.model_validate({"apiKey": "k"})

    def test_to_relay_request(self):
        from chatrelay.api.models import RelayRequestBody

        body = RelayRequestBody.model_validate(chat_body(
            messages=[
                {"role": "system", "content": "Be brief"},
                {"role": "user", "content": [
                    {"type": "text", "text": "read this"},
                    {"type": "file_id", "file_id": {"id": "f1", "name": "a.txt"}},
                    {"type": "input_audio", "input_audio": {"data": "..."}},
                ]},
            ],
            parameters={"temperature": None, "max_tokens": 50},
            stream=True,
        ))

        request = body.to_relay_request()

        assert request.messages[0].role == Role.SYSTEM
        parts = request.messages[1].content
        assert parts[1] == FileRefPart(id="f1", name="a.txt")
        assert isinstance(parts[2], RawPart)
        assert request.parameters == {"max_tokens": 50}
        assert request.stream is True

    def test_missing_key_is_not_a_validation_error(self):
        from chatrelay.api.models import RelayRequestBody

        data = chat_body()
        del data["apiKey"]

        assert RelayRequestBody.model_validate(data).to_relay_request().api_key == ""


class TestDependencies:

    def test_unset_relay_is_unavailable(self):
        from chatrelay.api import dependencies
        from chatrelay.server import get_relay_instance

        dependencies.set_relay_getter(lambda: None)
        try:
            with pytest.raises(RelayException) as exc_info:
                dependencies.get_relay()
        finally:
            dependencies.set_relay_getter(get_relay_instance)

        assert exc_info.value.status_code == 503


# ============================================================
# Buffered relay
# ============================================================

class TestBufferedRelay:

    def test_upstream_body_returned(self, client, upstream):
        response = client.post("/api/chat", json=chat_body())

        assert response.status_code == 200
        assert response.json() == completion_body("Hi there")
        assert response.headers["x-request-id"].startswith("req_")

    def test_body_with_invalid_usage_passed_through(self, client, upstream):
        body = completion_body("Hi there", {"prompt_tokens": "n/a", "completion_tokens": 1})
        upstream.handler = lambda request: httpx.Response(200, json=body)

        response = client.post("/api/chat", json=chat_body())

        assert response.status_code == 200
        assert response.json() == body

    def test_upstream_request(self, client, upstream):
        client.post(
            "/api/chat",
            json=chat_body(baseUrl="https://upstream.test/v1/", parameters={"temperature": 0.2}),
            headers={"X-Request-Id": "req_fixed"},
        )

        sent = upstream.requests[0]
        assert str(sent.url) == "https://upstream.test/v1/chat/completions"
        assert sent.headers["authorization"] == "Bearer sk-test"
        assert sent.headers["x-request-id"] == "req_fixed"
        assert upstream.last_json == {
            "model": "gpt-4o",
            "messages": [{"role": "user", "content": "Hello"}],
            "stream": False,
            "temperature": 0.2,
        }

    def test_request_id_passthrough(self, client):
        response = client.post("/api/chat", json=chat_body(), headers={"X-Request-Id": "req_fixed"})

        assert response.headers["x-request-id"] == "req_fixed"
        assert "x-trace-id" in response.headers

    def test_missing_api_key(self, client, upstream):
        data = chat_body()
        del data["apiKey"]

        response = client.post("/api/chat", json=data)

        assert response.status_code == 400
        assert response.json() == {"error": "API Key is required. Please set it in Settings."}
        assert response.headers["x-error-code"] == "missing_credential"
        assert upstream.requests == []

    def test_empty_api_key(self, client, upstream):
        response = client.post("/api/chat", json=chat_body(apiKey=""))

        assert response.status_code == 400
        assert upstream.requests == []

    def test_upstream_status_passed_through(self, client, upstream):
        upstream.handler = lambda request: httpx.Response(
            429, json={"error": {"message": "rate limited"}}
        )

        response = client.post("/api/chat", json=chat_body())

        assert response.status_code == 429
        assert response.json() == {"error": "rate limited"}
        assert response.headers["x-error-code"] == "upstream_http_error"

    def test_transport_failure(self, client, upstream):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)
        upstream.handler = refuse

        response = client.post("/api/chat", json=chat_body())

        assert response.status_code == 502
        assert response.headers["x-error-code"] == "transport_error"
        assert "connection refused" in response.json()["error"]

    def test_upstream_timeout(self, client, upstream):
        def slow(request):
            raise httpx.ReadTimeout("timed out", request=request)
        upstream.handler = slow

        response = client.post("/api/chat", json=chat_body())

        assert response.status_code == 504
        assert response.headers["x-error-code"] == "timeout"

    def test_invalid_body(self, client):
        response = client.post("/api/chat", json={"model": "gpt-4o"})

        assert response.status_code == 422

    def test_request_metrics(self, client):
        from chatrelay.observability.metrics import get_metrics

        client.post("/api/chat", json=chat_body())

        assert get_metrics().registry.get_sample_value(
            "chatrelay_requests_total",
            {"mode": "buffered", "status": "200", "error_code": "none"},
        ) == 1


# ============================================================
# Streamed relay
# ============================================================

class TestStreamedRelay:

    def test_bytes_proxied_unchanged(self, client, upstream):
        body = ChunkedStream(HELLO_FRAMES)
        upstream.handler = lambda request: httpx.Response(
            200, stream=body, headers={"content-type": "text/event-stream"}
        )

        response = client.post("/api/chat", json=chat_body(stream=True))

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        assert response.content == b"".join(HELLO_FRAMES)
        assert body.closed is True

    def test_upstream_asked_for_usage(self, client, upstream):
        upstream.handler = lambda request: httpx.Response(200, stream=ChunkedStream(HELLO_FRAMES))

        client.post("/api/chat", json=chat_body(stream=True))

        assert upstream.last_json["stream"] is True
        assert upstream.last_json["stream_options"] == {"include_usage": True}

    def test_failure_after_start_becomes_error_frame(self, client, upstream):
        upstream.handler = lambda request: httpx.Response(
            200,
            stream=ChunkedStream(HELLO_FRAMES, fail_after=1),
            headers={"content-type": "text/event-stream"},
        )

        response = client.post("/api/chat", json=chat_body(stream=True))

        assert response.status_code == 200
        assert response.content.startswith(HELLO_FRAMES[0])
        assert response.content.endswith(b"data: [DONE]\n\n")

        decoder = StreamDecoder()
        events = decoder.feed(response.content) + decoder.close()
        assert events == [
            ContentDelta("Hel"),
            StreamFailure(message="connection reset by peer", code="stream_interrupted"),
            Done(),
        ]

    def test_error_before_start_is_plain_json(self, client, upstream):
        upstream.handler = lambda request: httpx.Response(
            401, json={"error": {"message": "invalid api key"}}
        )

        response = client.post("/api/chat", json=chat_body(stream=True))

        assert response.status_code == 401
        assert response.json() == {"error": "invalid api key"}

    def test_stream_metrics(self, client, upstream):
        from chatrelay.observability.metrics import get_metrics

        upstream.handler = lambda request: httpx.Response(200, stream=ChunkedStream(HELLO_FRAMES))

        client.post("/api/chat", json=chat_body(stream=True))

        registry = get_metrics().registry
        assert registry.get_sample_value(
            "chatrelay_requests_total",
            {"mode": "stream", "status": "200", "error_code": "none"},
        ) == 1
        assert registry.get_sample_value("chatrelay_active_streams") == 0

    def test_unreadable_stream(self):
        class ClosedStreamRelay(BaseAdapter):
            async def send(self, request, request_id=""):
                response = httpx.Response(200, stream=ChunkedStream([b"data: [DONE]\n\n"]))
                await response.aclose()
                return ByteStream(response, request_id)

        response = client_for(ClosedStreamRelay()).post("/api/chat", json=chat_body(stream=True))

        assert response.status_code == 502
        assert response.json() == {"error": "Failed to get response reader"}
        assert response.headers["x-error-code"] == "reader_unavailable"


# ============================================================
# Unexpected failures
# ============================================================

class TestUnexpectedFailure:

    def test_internal_error_hides_details(self):
        class BrokenRelay(BaseAdapter):
            async def send(self, request, request_id=""):
                raise RuntimeError("secret internals")

        response = client_for(BrokenRelay()).post("/api/chat", json=chat_body())

        assert response.status_code == 500
        assert response.json() == {"error": "Internal Server Error"}
        assert response.headers["x-error-code"] == "internal_error"
        assert "secret internals" not in response.text

    def test_internal_error_logged_once(self, caplog):
        class BrokenRelay(BaseAdapter):
            async def send(self, request, request_id=""):
                raise RuntimeError("secret internals")

        with caplog.at_level(logging.INFO, logger="chatrelay"):
            client_for(BrokenRelay()).post("/api/chat", json=chat_body())

        errors = [r for r in caplog.records if r.levelno >= logging.ERROR]
        assert [r.getMessage() for r in errors] == ["Unhandled exception"]
        assert errors[0].error_type == "RuntimeError"


# ============================================================
# Core endpoints
# ============================================================

class TestCoreEndpoints:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "version": "1.0.0"}

    def test_health_not_traced(self, client):
        response = client.get("/health")

        assert "x-trace-id" not in response.headers

    def test_metrics(self, client):
        client.post("/api/chat", json=chat_body())

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "chatrelay_requests_total" in response.text
        assert "chatrelay_tokens_total" in response.text

    def test_cors_exposes_request_id(self, client):
        response = client.post(
            "/api/chat",
            json=chat_body(),
            headers={"Origin": "http://localhost:3000"},
        )

        assert "X-Request-Id" in response.headers.get("access-control-expose-headers", "")
