"""
chatrelay - Chat Service

Drives one submission end to end: compose the user turn, call the adapter,
and reconcile the buffered body or the decoded stream into the session.
"""

import asyncio
from typing import Callable, List, Optional

import httpx

from ..adapters.base import BaseAdapter, ByteStream
from ..core.errors import RelayException, classify_transport_error
from ..core.models import (
    DEFAULT_SESSION_TITLE,
    ContentPart,
    FilePart,
    ImagePart,
    MessageContent,
    ModelConfig,
    RelayRequest,
    Session,
    TextPart,
    UserSettings,
)
from ..observability.logging import get_logger
from ..streaming.decoder import StreamDecoder, decode_stream
from .reconciler import SessionReconciler, derive_title, truncate_title

logger = get_logger(__name__)

IMAGE_DEFAULT_PROMPT = "What is in this image?"
FILE_DEFAULT_PROMPT = "Please analyze this file."
IMAGE_SESSION_TITLE = "Image Chat"


def supports_images(model: Optional[ModelConfig]) -> bool:
    return model is not None and model.capabilities.images


def supports_files(model: Optional[ModelConfig]) -> bool:
    return model is not None and model.capabilities.files


def compose_user_content(
    text: str,
    image_url: Optional[str] = None,
    file: Optional[FilePart] = None,
) -> MessageContent:
    """
    User message content for a prompt with optional attachments.

    Without attachments the prompt stays bare text. With one, the content is
    `[text, image?, file?]`, and an empty prompt is replaced by a default
    question about the attachment.
    """
    if not image_url and file is None:
        return text

    if text.strip():
        prompt = text
    elif image_url:
        prompt = IMAGE_DEFAULT_PROMPT
    else:
        prompt = FILE_DEFAULT_PROMPT

    parts: List[ContentPart] = [TextPart(prompt)]
    if image_url:
        parts.append(ImagePart(url=image_url))
    if file is not None:
        parts.append(file)
    return parts


def new_session_title(content: MessageContent, image_url: Optional[str], file: Optional[FilePart]) -> str:
    title = derive_title(content)
    if title is not None:
        return title
    if image_url:
        return IMAGE_SESSION_TITLE
    if file is not None:
        return truncate_title(f"File: {file.filename}")
    return DEFAULT_SESSION_TITLE


class ChatService:
    """
    Submits user turns through an adapter.

    The adapter can be a ProviderRelay (direct to the upstream) or a
    RelayClient (through a running relay).
    """

    def __init__(
        self,
        adapter: BaseAdapter,
        settings: UserSettings,
        stream_enabled: bool = True,
    ):
        self.adapter = adapter
        self.settings = settings
        self.stream_enabled = stream_enabled

    def build_request(self, session: Session, model_id: str) -> RelayRequest:
        """Relay call for the session history, gated by the model capabilities."""
        model = self.settings.find_model(model_id)
        stream = self.stream_enabled and model is not None and model.capabilities.stream
        parameters = model.parameters.to_options() if model and model.parameters else {}
        return RelayRequest(
            messages=list(session.messages),
            model=model_id,
            api_key=self.settings.api_key,
            base_url=self.settings.base_url,
            parameters=parameters,
            stream=stream,
        )

    async def submit(
        self,
        text: str,
        model_id: str,
        session: Optional[Session] = None,
        image_url: Optional[str] = None,
        file: Optional[FilePart] = None,
        on_change: Optional[Callable[[Session], None]] = None,
        request_id: str = "",
    ) -> Session:
        """
        Send one user turn and reconcile the answer into the session.

        A new session is created when none is given. Classified failures end
        the turn with an `Error: ...` assistant message instead of raising.

        Raises:
            ValueError: nothing to send (empty prompt, no attachment)
        """
        if not text.strip() and not image_url and file is None:
            raise ValueError("Nothing to send")

        content = compose_user_content(text, image_url, file)

        if session is None:
            session = Session.new(model_id, title=new_session_title(content, image_url, file))

        reconciler = SessionReconciler(session, on_change)
        reconciler.append_user_message(content)

        request = self.build_request(session, model_id)
        logger.debug(
            "Submitting chat turn",
            session_id=session.id,
            model=request.model,
            stream=request.stream,
            message_count=len(request.messages),
        )

        try:
            result = await self.adapter.send(request, request_id)
            if isinstance(result, ByteStream):
                await self._consume_stream(result, reconciler)
            else:
                reconciler.apply_buffered(result)
        except RelayException as e:
            reconciler.apply_error(e)

        return session

    async def _consume_stream(self, stream: ByteStream, reconciler: SessionReconciler):
        decoder = StreamDecoder()
        try:
            reader = stream.open_reader()
            reconciler.begin_assistant_turn()
            await reconciler.consume(decode_stream(reader, decoder))
        except httpx.HTTPError as e:
            raise classify_transport_error(e, stream.request_id)
        except asyncio.CancelledError:
            logger.info("Stream cancelled by caller", session_id=reconciler.session.id)
            raise
        finally:
            await stream.aclose()
            if decoder.errors:
                logger.warning(
                    "Stream finished with skipped events",
                    session_id=reconciler.session.id,
                    parse_errors=len(decoder.errors),
                )
