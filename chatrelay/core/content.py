"""
chatrelay - Content Normalizer

Rewrites message content parts into the shape an OpenAI-compatible
chat-completion endpoint accepts. Pure transform, no error conditions.
"""

from typing import Any, Dict, List

from .models import (
    ContentPart,
    FilePart,
    FileRefPart,
    ImagePart,
    Message,
    MessageContent,
    RawPart,
    TextPart,
    message_to_dict,
)


def resolve_file_ref(part: FileRefPart) -> TextPart:
    """
    Replace a file reference with text the upstream understands.

    Inline content is quoted under a header; otherwise only the file's
    label is mentioned.
    """
    if part.content:
        return TextPart(text=f'File content for "{part.label}":\n\n{part.content}')
    return TextPart(text=f"[File attached: {part.label}]")


def normalize_part(part: ContentPart) -> ContentPart:
    """Normalize a single part."""
    if isinstance(part, (TextPart, ImagePart, FilePart, RawPart)):
        return part
    if isinstance(part, FileRefPart):
        return resolve_file_ref(part)
    raise TypeError(f"Unhandled content part: {type(part).__name__}")


def normalize_content(content: MessageContent) -> MessageContent:
    """Bare strings pass through; part lists are normalized in order."""
    if isinstance(content, str):
        return content
    return [normalize_part(part) for part in content]


def normalize_message(message: Message) -> Message:
    return Message(role=message.role, content=normalize_content(message.content))


def normalize_messages(messages: List[Message]) -> List[Dict[str, Any]]:
    """Normalized messages in their upstream wire form."""
    return [message_to_dict(normalize_message(m)) for m in messages]

