"""
chatrelay - Chat Service Tests

Verifies:
- User content composition with image and file attachments
- Session creation and titles
- Streaming gated by the model capability and the service switch
- Buffered and streamed answers reconciled into the session
- Failures end the turn with an error message
"""

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from chatrelay.adapters.base import BaseAdapter, ByteStream
from chatrelay.core.models import (
    FilePart,
    ImagePart,
    Message,
    ModelCapabilities,
    ModelConfig,
    ModelParameters,
    Session,
    TextPart,
    Usage,
    UserSettings,
)
from chatrelay.sessions.service import (
    FILE_DEFAULT_PROMPT,
    IMAGE_DEFAULT_PROMPT,
    ChatService,
    compose_user_content,
    new_session_title,
    supports_files,
    supports_images,
)
from chatrelay.sessions.store import InMemorySessionStore

from conftest import ChunkedStream, FakeUpstream, completion_body, content_chunk, sse_frame, usage_chunk


STREAM_MODEL = ModelConfig(
    id="streamer",
    name="Streamer",
    capabilities=ModelCapabilities(images=True, stream=True),
    parameters=ModelParameters(temperature=0.7),
)
BUFFERED_MODEL = ModelConfig(
    id="buffered",
    name="Buffered",
    capabilities=ModelCapabilities(files=True),
)


@pytest.fixture
def settings():
    return UserSettings(
        base_url="https://upstream.test/v1",
        api_key="sk-test",
        models=[STREAM_MODEL, BUFFERED_MODEL],
    )


def stream_response(*frames: bytes, fail_after=None) -> httpx.Response:
    return httpx.Response(
        200,
        stream=ChunkedStream(list(frames), fail_after=fail_after),
        headers={"content-type": "text/event-stream"},
    )


HELLO = [
    sse_frame(content_chunk("Hel")).encode("utf-8"),
    sse_frame(content_chunk("lo")).encode("utf-8"),
    sse_frame(usage_chunk(5, 2)).encode("utf-8"),
    b"data: [DONE]\n\n",
]


# ============================================================
# Composition
# ============================================================

class TestComposeUserContent:

    def test_plain_text(self):
        assert compose_user_content("Hello") == "Hello"

    def test_image_with_prompt(self):
        content = compose_user_content("What breed?", image_url="data:image/png;base64,AA")

        assert content == [TextPart("What breed?"), ImagePart(url="data:image/png;base64,AA")]

    def test_image_without_prompt(self):
        content = compose_user_content("  ", image_url="data:image/png;base64,AA")

        assert content[0] == TextPart(IMAGE_DEFAULT_PROMPT)

    def test_file_without_prompt(self):
        pdf = FilePart(filename="report.pdf", data="JVBERi0=")

        content = compose_user_content("", file=pdf)

        assert content == [TextPart(FILE_DEFAULT_PROMPT), pdf]

    def test_image_and_file_order(self):
        pdf = FilePart(filename="report.pdf", data="JVBERi0=")

        content = compose_user_content("Compare", image_url="u", file=pdf)

        assert content == [TextPart("Compare"), ImagePart(url="u"), pdf]


class TestCapabilities:

    def test_flags(self):
        assert supports_images(STREAM_MODEL) is True
        assert supports_files(STREAM_MODEL) is False
        assert supports_files(BUFFERED_MODEL) is True
        assert supports_images(None) is False


class TestNewSessionTitle:

    def test_prompt_text_wins(self):
        assert new_session_title("Tell me a joke", None, None) == "Tell me a joke"

    def test_default_prompt_used_for_attachments(self):
        content = compose_user_content("", image_url="u")

        assert new_session_title(content, "u", None) == IMAGE_DEFAULT_PROMPT

    def test_fallbacks_without_text(self):
        assert new_session_title([ImagePart(url="u")], "u", None) == "Image Chat"
        long_name = FilePart(filename="quarterly-financial-results-2024.pdf", data="x")
        assert new_session_title([long_name], None, long_name) == "File: quarterly-financial-resu..."
        assert new_session_title([], None, None) == "New Chat"


# ============================================================
# Request construction
# ============================================================

class TestBuildRequest:

    def test_streaming_model(self, settings):
        service = ChatService(FakeUpstream(lambda r: None).relay(), settings)
        session = Session(id="s", model_id="streamer", messages=[Message.user("Hi")])

        request = service.build_request(session, "streamer")

        assert request.stream is True
        assert request.parameters == {"temperature": 0.7}
        assert request.api_key == "sk-test"
        assert request.base_url == "https://upstream.test/v1"
        assert request.messages == [Message.user("Hi")]

    def test_non_streaming_model(self, settings):
        service = ChatService(FakeUpstream(lambda r: None).relay(), settings)

        request = service.build_request(Session(id="s", model_id="buffered"), "buffered")

        assert request.stream is False
        assert request.parameters == {}

    def test_stream_switch_off(self, settings):
        service = ChatService(FakeUpstream(lambda r: None).relay(), settings, stream_enabled=False)

        assert service.build_request(Session(id="s", model_id="streamer"), "streamer").stream is False

    def test_unknown_model_buffered(self, settings):
        service = ChatService(FakeUpstream(lambda r: None).relay(), settings)

        request = service.build_request(Session(id="s", model_id="x"), "unknown-model")

        assert request.stream is False
        assert request.model == "unknown-model"


# ============================================================
# Submission
# ============================================================

class TestSubmit:

    @pytest.mark.asyncio
    async def test_nothing_to_send(self, settings):
        service = ChatService(FakeUpstream(lambda r: None).relay(), settings)

        with pytest.raises(ValueError):
            await service.submit("   ", "streamer")

    @pytest.mark.asyncio
    async def test_adapter_called_with_request_id(self, settings):
        adapter = AsyncMock(spec=BaseAdapter)
        adapter.send.return_value = completion_body("ok")
        service = ChatService(adapter, settings)

        await service.submit("Hi", "buffered", request_id="req_7")

        request, request_id = adapter.send.call_args.args
        assert request_id == "req_7"
        assert request.model == "buffered"
        assert request.messages[-1] == Message.user("Hi")

    @pytest.mark.asyncio
    async def test_streamed_answer(self, settings):
        upstream = FakeUpstream(lambda request: stream_response(*HELLO))
        service = ChatService(upstream.relay(), settings)
        snapshots = []

        session = await service.submit(
            "Say hello",
            "streamer",
            on_change=lambda s: snapshots.append(list(s.messages)),
        )

        assert session.title == "Say hello"
        assert session.model_id == "streamer"
        assert session.messages == [Message.user("Say hello"), Message.assistant("Hello")]
        assert session.usage == Usage(5, 2, 7)
        assert upstream.last_json["stream"] is True
        assert upstream.last_json["temperature"] == 0.7
        assert snapshots[1] == [Message.user("Say hello"), Message.assistant("")]
        assert snapshots[-1][-1] == Message.assistant("Hello")

    @pytest.mark.asyncio
    async def test_buffered_answer(self, settings):
        usage = {"prompt_tokens": 3, "completion_tokens": 2, "total_tokens": 5}
        upstream = FakeUpstream(
            lambda request: httpx.Response(200, json=completion_body("Hi there", usage))
        )
        service = ChatService(upstream.relay(), settings)

        session = await service.submit("Hi", "buffered")

        assert session.messages == [Message.user("Hi"), Message.assistant("Hi there")]
        assert session.usage == Usage(3, 2, 5)
        assert upstream.last_json["stream"] is False

    @pytest.mark.asyncio
    async def test_buffered_answer_with_invalid_usage(self, settings):
        usage = {"prompt_tokens": -1, "completion_tokens": 2, "total_tokens": 1}
        upstream = FakeUpstream(
            lambda request: httpx.Response(200, json=completion_body("Hi there", usage))
        )
        service = ChatService(upstream.relay(), settings)

        session = await service.submit("Hi", "buffered")

        assert session.messages == [Message.user("Hi"), Message.assistant("Hi there")]
        assert session.usage is None

    @pytest.mark.asyncio
    async def test_history_sent_on_follow_up(self, settings):
        upstream = FakeUpstream(lambda request: httpx.Response(200, json=completion_body("Second")))
        service = ChatService(upstream.relay(), settings)
        session = Session(
            id="s",
            model_id="buffered",
            title="Earlier",
            messages=[Message.user("First"), Message.assistant("Answer")],
        )

        await service.submit("Again", "buffered", session=session)

        assert [m["content"] for m in upstream.last_json["messages"]] == ["First", "Answer", "Again"]
        assert session.title == "Earlier"
        assert session.messages[-1] == Message.assistant("Second")

    @pytest.mark.asyncio
    async def test_image_submission(self, settings):
        upstream = FakeUpstream(lambda request: stream_response(b"data: [DONE]\n\n"))
        service = ChatService(upstream.relay(), settings)

        session = await service.submit("", "streamer", image_url="data:image/png;base64,AA")

        sent = upstream.last_json["messages"][0]["content"]
        assert sent == [
            {"type": "text", "text": IMAGE_DEFAULT_PROMPT},
            {"type": "image_url", "image_url": {"url": "data:image/png;base64,AA"}},
        ]
        assert session.title == IMAGE_DEFAULT_PROMPT

    @pytest.mark.asyncio
    async def test_upstream_error_becomes_error_turn(self, settings):
        upstream = FakeUpstream(
            lambda request: httpx.Response(429, json={"error": {"message": "rate limited"}})
        )
        service = ChatService(upstream.relay(), settings)

        session = await service.submit("Hi", "streamer")

        assert session.messages == [Message.user("Hi"), Message.assistant("Error: rate limited")]

    @pytest.mark.asyncio
    async def test_missing_key_becomes_error_turn(self, settings):
        settings.api_key = ""
        upstream = FakeUpstream(lambda request: httpx.Response(200, json=completion_body("x")))
        service = ChatService(upstream.relay(), settings)

        session = await service.submit("Hi", "buffered")

        assert session.messages[-1].content == "Error: API Key is required. Please set it in Settings."
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_mid_stream_failure_keeps_partial_text(self, settings):
        body = ChunkedStream(HELLO, fail_after=1)
        upstream = FakeUpstream(lambda request: httpx.Response(200, stream=body))
        service = ChatService(upstream.relay(), settings)

        session = await service.submit("Hi", "streamer")

        assert [m.content for m in session.messages] == [
            "Hi",
            "Hel",
            "Error: connection reset by peer",
        ]
        assert body.closed is True

    @pytest.mark.asyncio
    async def test_in_band_failure_frame(self, settings):
        frames = [
            sse_frame(content_chunk("Par")).encode("utf-8"),
            sse_frame({"error": {"code": "stream_interrupted", "message": "upstream went away"}}).encode("utf-8"),
            b"data: [DONE]\n\n",
        ]
        upstream = FakeUpstream(lambda request: stream_response(*frames))
        service = ChatService(upstream.relay(), settings)

        session = await service.submit("Hi", "streamer")

        assert [m.content for m in session.messages] == ["Hi", "Par", "Error: upstream went away"]

    @pytest.mark.asyncio
    async def test_unreadable_stream_replaces_nothing(self, settings):
        class ClosedStreamAdapter(BaseAdapter):
            async def send(self, request, request_id=""):
                response = httpx.Response(200, stream=ChunkedStream([]))
                await response.aclose()
                return ByteStream(response, request_id)

        service = ChatService(ClosedStreamAdapter(), settings)

        session = await service.submit("Hi", "streamer")

        assert session.messages == [
            Message.user("Hi"),
            Message.assistant("Error: Failed to get response reader"),
        ]

    @pytest.mark.asyncio
    async def test_cancellation_closes_stream(self, settings):
        gate = asyncio.Event()

        class HangingStream(httpx.AsyncByteStream):
            closed = False

            async def __aiter__(self):
                yield sse_frame(content_chunk("Hel")).encode("utf-8")
                await gate.wait()
                yield b"data: [DONE]\n\n"

            async def aclose(self):
                HangingStream.closed = True

        upstream = FakeUpstream(lambda request: httpx.Response(200, stream=HangingStream()))
        service = ChatService(upstream.relay(), settings)
        session = Session(id="s", model_id="streamer")

        task = asyncio.ensure_future(service.submit("Hi", "streamer", session=session))
        for _ in range(1000):
            if session.messages and session.messages[-1].content == "Hel":
                break
            await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert HangingStream.closed is True
        assert session.messages[-1] == Message.assistant("Hel")


# ============================================================
# Session store
# ============================================================

class TestInMemorySessionStore:

    def test_round_trip_is_a_copy(self):
        store = InMemorySessionStore()
        session = Session(id="s", model_id="m", messages=[Message.user("Hi")])

        store.save([session])
        session.messages.append(Message.assistant("later"))
        loaded = store.load()

        assert loaded[0].messages == [Message.user("Hi")]
        assert loaded[0] is not session

    def test_empty_by_default(self):
        assert InMemorySessionStore().load() == []
