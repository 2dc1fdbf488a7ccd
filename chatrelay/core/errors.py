"""
chatrelay - Error Definitions

Error taxonomy for the relay, the stream decoder and the session flow.

Fatal kinds (propagate to the caller as one classified error):
- missing_credential: no API key, the network is never touched
- upstream_http_error: upstream answered with a non-2xx status
- reader_unavailable: a streamed response has no readable body
- transport_error: no HTTP response at all (connect failure, timeout, abort)
- stream_interrupted: the relay reported an in-band failure mid-stream

Non-fatal kind (recorded, decoding continues):
- stream_parse_error: one malformed event line
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import httpx


class ErrorKind(str, Enum):
    """Error classification."""
    MISSING_CREDENTIAL = "missing_credential"
    UPSTREAM_HTTP_ERROR = "upstream_http_error"
    READER_UNAVAILABLE = "reader_unavailable"
    STREAM_PARSE_ERROR = "stream_parse_error"
    TRANSPORT_ERROR = "transport_error"
    STREAM_INTERRUPTED = "stream_interrupted"


MISSING_CREDENTIAL_MESSAGE = "API Key is required. Please set it in Settings."


@dataclass
class ErrorDetails:
    """Full error information for API responses and logs."""
    code: str
    message: str
    kind: ErrorKind

    http_status: Optional[int] = None
    request_id: str = ""
    fatal: bool = True

    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "kind": self.kind.value,
            "request_id": self.request_id,
        }
        if self.http_status is not None:
            result["http_status"] = self.http_status
        if self.details:
            result["details"] = self.details
        return {"error": result}


class RelayException(Exception):
    """Base exception for all chatrelay errors."""

    def __init__(self, error: ErrorDetails, status_code: int = 500):
        self.error = error
        self.status_code = status_code
        super().__init__(error.message)

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind

    @property
    def message(self) -> str:
        return self.error.message


class MissingCredentialError(RelayException):
    """No API key configured; never attempts the network call."""

    def __init__(self, request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code=ErrorKind.MISSING_CREDENTIAL.value,
                message=MISSING_CREDENTIAL_MESSAGE,
                kind=ErrorKind.MISSING_CREDENTIAL,
                request_id=request_id,
            ),
            status_code=400
        )


class UpstreamHttpError(RelayException):
    """Upstream returned a non-2xx response."""

    def __init__(self, status: int, message: str, request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code=ErrorKind.UPSTREAM_HTTP_ERROR.value,
                message=message,
                kind=ErrorKind.UPSTREAM_HTTP_ERROR,
                http_status=status,
                request_id=request_id,
            ),
            status_code=status
        )

    @property
    def status(self) -> int:
        return self.status_code


class ReaderUnavailableError(RelayException):
    """Streaming was requested but the response body cannot be read."""

    def __init__(self, message: str = "Failed to get response reader", request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code=ErrorKind.READER_UNAVAILABLE.value,
                message=message,
                kind=ErrorKind.READER_UNAVAILABLE,
                request_id=request_id,
            ),
            status_code=502
        )


class TransportError(RelayException):
    """Network failure, timeout or abort with no HTTP response."""

    def __init__(self, message: str, timed_out: bool = False, request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code="timeout" if timed_out else ErrorKind.TRANSPORT_ERROR.value,
                message=message,
                kind=ErrorKind.TRANSPORT_ERROR,
                request_id=request_id,
                details={"timed_out": timed_out},
            ),
            status_code=504 if timed_out else 502
        )


class StreamInterruptedError(RelayException):
    """The relay reported a failure after the stream had started."""

    def __init__(self, message: str, partial_content: str = "", request_id: str = ""):
        details = {"partial_content": partial_content} if partial_content else {}
        super().__init__(
            ErrorDetails(
                code=ErrorKind.STREAM_INTERRUPTED.value,
                message=message,
                kind=ErrorKind.STREAM_INTERRUPTED,
                request_id=request_id,
                details=details,
            ),
            status_code=502
        )


class StreamParseError(RelayException):
    """
    One event line whose payload is not valid JSON.

    Never raised by the decoder; it is recorded and decoding continues.
    """

    def __init__(self, line: str, reason: str, line_number: int = 0):
        super().__init__(
            ErrorDetails(
                code=ErrorKind.STREAM_PARSE_ERROR.value,
                message=f"Error parsing stream: {reason}",
                kind=ErrorKind.STREAM_PARSE_ERROR,
                fatal=False,
                details={"line": line[:200], "line_number": line_number},
            ),
            status_code=502
        )


# ============================================================
# Classification helpers
# ============================================================

def synthesize_status_message(status: int, reason: str = "") -> str:
    """Message used when the error body cannot be inspected."""
    reason = reason or httpx.codes.get_reason_phrase(status)
    return f"Request failed with status {status}: {reason}"


def is_stream_shaped(content_type: str) -> bool:
    content_type = (content_type or "").lower()
    return (
        content_type.startswith("text/event-stream")
        or content_type.startswith("application/octet-stream")
    )


def extract_error_message(
    body: bytes,
    content_type: str,
    status: int,
    reason: str = "",
    fallback: str = "",
) -> str:
    """
    Best-effort message for a non-2xx response.

    Precedence: `error.message`, then `error` when it is a string, then the
    transport-level `fallback` text. A body that is not JSON falls through to
    `fallback` too; only a stream-shaped body skips extraction and yields
    `Request failed with status <code>: <reason>`.
    """
    if is_stream_shaped(content_type):
        return synthesize_status_message(status, reason)

    try:
        data = json.loads(body.decode("utf-8")) if body else None
    except (UnicodeDecodeError, ValueError):
        data = None

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str) and error["message"]:
            return error["message"]
        if isinstance(error, str) and error:
            return error

    return fallback or f"Request failed with status code {status}"


def classify_transport_error(error: httpx.HTTPError, request_id: str = "") -> TransportError:
    """Map an httpx transport exception to a TransportError."""
    if isinstance(error, httpx.TimeoutException):
        return TransportError(
            f"Upstream request timed out: {error}" if str(error) else "Upstream request timed out",
            timed_out=True,
            request_id=request_id,
        )
    return TransportError(str(error) or type(error).__name__, request_id=request_id)


def error_turn_text(error: Exception) -> str:
    """Text substituted for an assistant turn that failed."""
    message = error.message if isinstance(error, RelayException) else str(error)
    return f"Error: {message or 'Something went wrong. Please check your settings.'}"


def create_stream_error_chunk(error: RelayException) -> str:
    """
    In-band SSE error frame followed by the terminator.

    Sent when the upstream fails after the relay already answered 200.
    """
    return f"data: {json.dumps(error.error.to_dict())}\n\ndata: [DONE]\n\n"
