"""
chatrelay - Session Reconciler

Applies relay results (decoded stream events or a buffered body) to a
caller-owned Session.

One reconciler drives one in-flight request of one session; the caller must
not submit again to the same session until the request finished. Every
mutation assigns a fresh `session.messages` list and then calls
`on_change(session)`.
"""

from typing import Any, AsyncIterable, Callable, Dict, List, Optional

from ..core.errors import StreamInterruptedError, error_turn_text
from ..core.models import (
    DEFAULT_SESSION_TITLE,
    Message,
    MessageContent,
    Role,
    Session,
    Usage,
)
from ..observability.logging import get_logger
from ..streaming.decoder import ContentDelta, Done, StreamEvent, StreamFailure, UsageSnapshot

logger = get_logger(__name__)

TITLE_MAX_LENGTH = 30
TITLE_ELLIPSIS = "..."


def truncate_title(text: str) -> str:
    if len(text) > TITLE_MAX_LENGTH:
        return text[:TITLE_MAX_LENGTH] + TITLE_ELLIPSIS
    return text


def derive_title(content: MessageContent) -> Optional[str]:
    """
    Session title for a first user message.

    Uses the bare string, or the first text part. Returns None when there is
    no text to use.
    """
    text = Message.user(content).first_text()
    if not text:
        return None
    return truncate_title(text)


class SessionReconciler:
    """Applies one assistant turn to a session."""

    def __init__(
        self,
        session: Session,
        on_change: Optional[Callable[[Session], None]] = None,
    ):
        self.session = session
        self.on_change = on_change
        self._accumulated = ""
        self._turn_open = False

    @property
    def accumulated_text(self) -> str:
        return self._accumulated

    def _commit(self, messages: Optional[List[Message]] = None):
        if messages is not None:
            self.session.messages = messages
        if self.on_change is not None:
            self.on_change(self.session)

    # ============================================================
    # User side
    # ============================================================

    def append_user_message(self, content: MessageContent) -> Message:
        """Append a user turn; the first one may name the session."""
        message = Message.user(content)
        is_first = not any(m.role == Role.USER for m in self.session.messages)

        if is_first and self.session.title == DEFAULT_SESSION_TITLE:
            title = derive_title(content)
            if title is not None:
                self.session.title = title

        self._commit(self.session.messages + [message])
        return message

    # ============================================================
    # Streamed turn
    # ============================================================

    def begin_assistant_turn(self):
        """Add the empty assistant placeholder the deltas will fill."""
        self._accumulated = ""
        self._turn_open = True
        self._commit(self.session.messages + [Message.assistant("")])

    def apply(self, event: StreamEvent):
        """
        Apply one decoded event.

        Raises:
            StreamInterruptedError: the relay reported a failure in-band
        """
        if isinstance(event, ContentDelta):
            if not self._turn_open:
                self.begin_assistant_turn()
            self._accumulated += event.text
            messages = list(self.session.messages)
            messages[-1] = Message.assistant(self._accumulated)
            self._commit(messages)
        elif isinstance(event, UsageSnapshot):
            # Upstream reports running totals
            self.session.usage = event.usage
            self._commit()
        elif isinstance(event, Done):
            self._turn_open = False
        elif isinstance(event, StreamFailure):
            raise StreamInterruptedError(event.message, partial_content=self._accumulated)
        else:
            raise TypeError(f"Unhandled stream event: {type(event).__name__}")

    async def consume(self, events: AsyncIterable[StreamEvent]) -> str:
        """Apply every event in order; returns the final assistant text."""
        async for event in events:
            self.apply(event)
        self._turn_open = False
        return self._accumulated

    # ============================================================
    # Buffered turn
    # ============================================================

    def apply_buffered(self, body: Dict[str, Any]) -> str:
        """Append the assistant message of a buffered chat-completion body."""
        content = _buffered_content(body)

        usage = body.get("usage") if isinstance(body, dict) else None
        if isinstance(usage, dict):
            try:
                self.session.usage = Usage.from_dict(usage)
            except ValueError as e:
                logger.warning(
                    "Ignoring invalid usage in buffered response",
                    session_id=self.session.id,
                    error=str(e),
                )

        self._commit(self.session.messages + [Message.assistant(content)])
        return content

    # ============================================================
    # Failure
    # ============================================================

    def apply_error(self, error: Exception) -> Message:
        """
        Put the error text on the current assistant turn.

        An empty trailing assistant placeholder is replaced; otherwise the
        error is appended as a new assistant message.
        """
        message = Message.assistant(error_turn_text(error))
        messages = list(self.session.messages)

        if messages and messages[-1].role == Role.ASSISTANT and messages[-1].content == "":
            messages[-1] = message
        else:
            messages.append(message)

        self._turn_open = False
        logger.info("Assistant turn failed", session_id=self.session.id, error=str(error))
        self._commit(messages)
        return message


def _buffered_content(body: Any) -> str:
    if not isinstance(body, dict):
        return ""
    choices = body.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return ""
    message = choices[0].get("message")
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    return content if isinstance(content, str) else ""
