"""
chatrelay Streaming Module

Incremental decoding of OpenAI-compatible event streams into content
deltas, usage snapshots and the end-of-stream signal.
"""

from .decoder import (
    StreamDecoder,
    StreamEvent,
    StreamEventType,
    ContentDelta,
    UsageSnapshot,
    Done,
    StreamFailure,
    decode_stream,
    parse_event_payload,
)

__all__ = [
    "StreamDecoder",
    "StreamEvent",
    "StreamEventType",
    "ContentDelta",
    "UsageSnapshot",
    "Done",
    "StreamFailure",
    "decode_stream",
    "parse_event_payload",
]
