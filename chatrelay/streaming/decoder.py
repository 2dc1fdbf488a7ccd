"""
chatrelay - Stream Decoder

Turns the raw bytes of an OpenAI-compatible event stream into discrete
events, independent of how the bytes were chunked on the wire.

Framing:
- UTF-8 is decoded incrementally, so a multi-byte character split across
  two chunks is reassembled.
- Lines are the framing unit; an unterminated trailing line waits for the
  next chunk (or for close()).
- `data:` lines carry the payload; other SSE fields and blank lines are
  ignored.
- `data: [DONE]` ends the stream. A stream that just closes ends the same way.

A payload that is not valid JSON is recorded in `decoder.errors` and
skipped; it never ends the stream.
"""

import codecs
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterable, AsyncIterator, ClassVar, Dict, List, Optional, Union

from ..core.errors import StreamParseError
from ..core.models import Usage
from ..observability.logging import get_logger
from ..observability.metrics import get_metrics

logger = get_logger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


class StreamEventType(str, Enum):
    """Types of decoded stream events."""
    CONTENT_DELTA = "content_delta"
    USAGE = "usage"
    DONE = "done"
    FAILURE = "failure"


@dataclass(frozen=True)
class ContentDelta:
    """A non-empty piece of assistant text."""
    text: str

    type: ClassVar[StreamEventType] = StreamEventType.CONTENT_DELTA


@dataclass(frozen=True)
class UsageSnapshot:
    """Running token totals; each snapshot replaces the previous one."""
    usage: Usage

    type: ClassVar[StreamEventType] = StreamEventType.USAGE


@dataclass(frozen=True)
class Done:
    """End of stream, by terminator frame or by the stream closing."""

    type: ClassVar[StreamEventType] = StreamEventType.DONE


@dataclass(frozen=True)
class StreamFailure:
    """In-band error frame sent by the relay after the stream started."""
    message: str
    code: str = ""

    type: ClassVar[StreamEventType] = StreamEventType.FAILURE


StreamEvent = Union[ContentDelta, UsageSnapshot, Done, StreamFailure]


def _delta_text(data: Dict[str, Any]) -> str:
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return ""
    delta = choices[0].get("delta")
    if not isinstance(delta, dict):
        return ""
    content = delta.get("content")
    return content if isinstance(content, str) else ""


def parse_event_payload(payload: str) -> List[StreamEvent]:
    """
    Events carried by one JSON payload.

    A usage snapshot comes before the content delta of the same payload.
    Payloads of any other shape yield nothing.

    Raises:
        ValueError: the payload is not valid JSON or carries invalid usage
    """
    data = json.loads(payload)
    if not isinstance(data, dict):
        return []

    error = data.get("error")
    if error:
        if isinstance(error, dict):
            return [StreamFailure(
                message=str(error.get("message") or "Stream failed"),
                code=str(error.get("code") or ""),
            )]
        return [StreamFailure(message=str(error))]

    events: List[StreamEvent] = []

    usage = data.get("usage")
    if isinstance(usage, dict):
        events.append(UsageSnapshot(Usage.from_dict(usage)))

    text = _delta_text(data)
    if text:
        events.append(ContentDelta(text))

    return events


class StreamDecoder:
    """
    Incremental event-stream decoder.

    Push bytes with `feed()`, then call `close()` once the underlying stream
    ends. After `Done` has been emitted every further call returns nothing.
    """

    def __init__(self):
        self._text_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._line_number = 0
        self.done = False
        self.errors: List[StreamParseError] = []

    def feed(self, chunk: bytes) -> List[StreamEvent]:
        """Decode one chunk; returns the events completed by it."""
        if self.done:
            return []
        self._buffer += self._text_decoder.decode(chunk)
        return self._drain(final=False)

    def close(self) -> List[StreamEvent]:
        """Flush the remaining text and end the stream."""
        if self.done:
            return []
        self._buffer += self._text_decoder.decode(b"", final=True)
        events = self._drain(final=True)
        if not self.done:
            self.done = True
            events.append(self._record(Done()))
        return events

    def _drain(self, final: bool) -> List[StreamEvent]:
        lines = self._buffer.split("\n")
        # The last piece has no terminator yet unless the stream is over
        self._buffer = "" if final else lines.pop()

        events: List[StreamEvent] = []
        for line in lines:
            events.extend(self._process_line(line))
            if self.done:
                self._buffer = ""
                break
        return events

    def _process_line(self, line: str) -> List[StreamEvent]:
        self._line_number += 1

        if line.endswith("\r"):
            line = line[:-1]
        if not line.strip() or not line.startswith(DATA_PREFIX):
            return []

        payload = line[len(DATA_PREFIX):]
        if payload.startswith(" "):
            payload = payload[1:]

        if payload.strip() == DONE_SENTINEL:
            self.done = True
            return [self._record(Done())]

        try:
            events = parse_event_payload(payload)
        except ValueError as e:
            error = StreamParseError(payload, str(e), self._line_number)
            self.errors.append(error)
            get_metrics().record_parse_error()
            logger.warning(
                "Skipping malformed stream event",
                line_number=self._line_number,
                reason=str(e),
            )
            return []

        return [self._record(event) for event in events]

    def _record(self, event: StreamEvent) -> StreamEvent:
        get_metrics().record_stream_event(event.type.value)
        return event


async def decode_stream(
    chunks: AsyncIterable[bytes],
    decoder: Optional[StreamDecoder] = None,
) -> AsyncIterator[StreamEvent]:
    """
    Pull-style decoding of an async byte source.

    Reading stops as soon as `Done` is produced; closing the source is the
    caller's job.
    """
    decoder = decoder or StreamDecoder()

    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
        if decoder.done:
            return

    for event in decoder.close():
        yield event
