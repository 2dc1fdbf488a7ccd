"""
chatrelay - Core Data Models

Messages, content parts, usage accounting, model configuration and the
caller-owned session, plus their JSON (de)serialization.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from ..config import DEFAULT_BASE_URL


# ============================================================
# Enums
# ============================================================

class Role(str, Enum):
    """Message roles."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ContentType(str, Enum):
    """Wire tags of content parts."""
    TEXT = "text"
    IMAGE_URL = "image_url"
    FILE = "file"
    FILE_ID = "file_id"


# ============================================================
# Content Parts
# ============================================================

@dataclass
class TextPart:
    """Plain text."""
    text: str


@dataclass
class ImagePart:
    """Image reference: a data URI or a remote URL."""
    url: str
    detail: Optional[str] = None


@dataclass
class FilePart:
    """Inline file payload (base64 data, no data-URI prefix)."""
    filename: str
    data: str


@dataclass
class FileRefPart:
    """Reference to a previously uploaded or externally stored file."""
    id: str
    name: Optional[str] = None
    content: Optional[str] = None

    @property
    def label(self) -> str:
        return self.name or self.id


@dataclass
class RawPart:
    """A part that matched none of the known shapes, kept verbatim."""
    data: Any


ContentPart = Union[TextPart, ImagePart, FilePart, FileRefPart, RawPart]
MessageContent = Union[str, List[ContentPart]]


def content_part_from_dict(data: Any) -> ContentPart:
    """
    Parse one wire content part.

    Anything that does not fit a known shape becomes a RawPart instead of
    raising, so callers can forward it untouched.
    """
    if not isinstance(data, dict):
        return RawPart(data)

    part_type = data.get("type")

    if part_type == ContentType.TEXT.value and isinstance(data.get("text"), str):
        return TextPart(text=data["text"])

    if part_type == ContentType.IMAGE_URL.value:
        image = data.get("image_url")
        if isinstance(image, dict) and isinstance(image.get("url"), str):
            return ImagePart(url=image["url"], detail=image.get("detail"))

    if part_type == ContentType.FILE.value:
        file = data.get("file")
        if (
            isinstance(file, dict)
            and isinstance(file.get("filename"), str)
            and isinstance(file.get("file_data"), str)
        ):
            return FilePart(filename=file["filename"], data=file["file_data"])

    if part_type == ContentType.FILE_ID.value:
        ref = data.get("file_id")
        if isinstance(ref, dict) and isinstance(ref.get("id"), str):
            return FileRefPart(
                id=ref["id"],
                name=ref.get("name"),
                content=ref.get("content"),
            )

    return RawPart(data)


def content_part_to_dict(part: ContentPart) -> Any:
    """Serialize a content part back to its wire shape."""
    if isinstance(part, TextPart):
        return {"type": ContentType.TEXT.value, "text": part.text}
    if isinstance(part, ImagePart):
        image: Dict[str, Any] = {"url": part.url}
        if part.detail is not None:
            image["detail"] = part.detail
        return {"type": ContentType.IMAGE_URL.value, "image_url": image}
    if isinstance(part, FilePart):
        return {
            "type": ContentType.FILE.value,
            "file": {"filename": part.filename, "file_data": part.data},
        }
    if isinstance(part, FileRefPart):
        ref: Dict[str, Any] = {"id": part.id}
        if part.name is not None:
            ref["name"] = part.name
        if part.content is not None:
            ref["content"] = part.content
        return {"type": ContentType.FILE_ID.value, "file_id": ref}
    if isinstance(part, RawPart):
        return part.data
    raise TypeError(f"Unhandled content part: {type(part).__name__}")


# ============================================================
# Messages
# ============================================================

@dataclass
class Message:
    """
    A conversation turn.

    Content is either bare text or an ordered list of parts.
    """
    role: Role
    content: MessageContent = ""

    @classmethod
    def user(cls, content: MessageContent) -> Message:
        """Create a user message."""
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str = "") -> Message:
        """Create an assistant message."""
        return cls(role=Role.ASSISTANT, content=content)

    def first_text(self) -> Optional[str]:
        """Bare string content, or the text of the first text part."""
        if isinstance(self.content, str):
            return self.content
        for part in self.content:
            if isinstance(part, TextPart):
                return part.text
        return None


def message_to_dict(msg: Message) -> Dict[str, Any]:
    """Convert Message to dictionary for JSON serialization."""
    if isinstance(msg.content, str):
        content: Any = msg.content
    else:
        content = [content_part_to_dict(part) for part in msg.content]
    return {"role": msg.role.value, "content": content}


def message_from_dict(data: Dict[str, Any]) -> Message:
    """Parse a wire message. A missing content becomes an empty string."""
    content = data.get("content")
    if isinstance(content, list):
        parsed: MessageContent = [content_part_from_dict(part) for part in content]
    elif content is None:
        parsed = ""
    else:
        parsed = str(content)
    return Message(role=Role(data.get("role", Role.USER.value)), content=parsed)


# ============================================================
# Usage
# ============================================================

def _token_count(data: Dict[str, Any], name: str) -> int:
    value = data.get(name) or 0
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        raise ValueError(f"{name} is not a token count: {value!r}")


@dataclass
class Usage:
    """Token usage as reported by the upstream."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __post_init__(self):
        for name in ("prompt_tokens", "completion_tokens", "total_tokens"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Usage:
        """
        Create from an upstream usage object; missing counters are zero.

        Raises:
            ValueError: a counter is not a non-negative integer
        """
        return cls(
            prompt_tokens=_token_count(data, "prompt_tokens"),
            completion_tokens=_token_count(data, "completion_tokens"),
            total_tokens=_token_count(data, "total_tokens"),
        )

    def to_dict(self) -> Dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


# ============================================================
# Model Configuration
# ============================================================

@dataclass
class ModelCapabilities:
    """Feature flags gating UI affordances and request options."""
    web_search: bool = False
    images: bool = False
    files: bool = False
    video: bool = False
    stream: bool = False


@dataclass
class ModelParameters:
    """Sampling options; each one is independently unset (None)."""
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    max_tokens: Optional[int] = None

    def to_options(self) -> Dict[str, Any]:
        """Wire options with every unset entry omitted."""
        options = {
            "temperature": self.temperature,
            "top_p": self.top_p,
            "frequency_penalty": self.frequency_penalty,
            "presence_penalty": self.presence_penalty,
            "max_tokens": self.max_tokens,
        }
        return {key: value for key, value in options.items() if value is not None}


@dataclass
class ModelConfig:
    """A user-configured model entry."""
    id: str
    name: str
    capabilities: ModelCapabilities = field(default_factory=ModelCapabilities)
    parameters: Optional[ModelParameters] = None


def model_config_to_dict(model: ModelConfig) -> Dict[str, Any]:
    caps = model.capabilities
    result: Dict[str, Any] = {
        "id": model.id,
        "name": model.name,
        "capabilities": {
            "websearch": caps.web_search,
            "images": caps.images,
            "files": caps.files,
            "video": caps.video,
            "stream": caps.stream,
        },
    }
    if model.parameters is not None:
        result["parameters"] = model.parameters.to_options()
    return result


def model_config_from_dict(data: Dict[str, Any]) -> ModelConfig:
    caps = data.get("capabilities") or {}
    params = data.get("parameters")
    return ModelConfig(
        id=data["id"],
        name=data.get("name") or data["id"],
        capabilities=ModelCapabilities(
            web_search=bool(caps.get("websearch", False)),
            images=bool(caps.get("images", False)),
            files=bool(caps.get("files", False)),
            video=bool(caps.get("video", False)),
            stream=bool(caps.get("stream", False)),
        ),
        parameters=ModelParameters(
            temperature=params.get("temperature"),
            top_p=params.get("top_p"),
            frequency_penalty=params.get("frequency_penalty"),
            presence_penalty=params.get("presence_penalty"),
            max_tokens=params.get("max_tokens"),
        ) if isinstance(params, dict) else None,
    )


DEFAULT_MODELS: List[ModelConfig] = [
    ModelConfig(
        id="gpt-5.2",
        name="GPT-5.2",
        capabilities=ModelCapabilities(web_search=True, images=True, files=True, stream=True),
    ),
    ModelConfig(
        id="gemini-3-pro-preview-thinking-1229",
        name="Gemini 3 Pro Thinking (1229)",
        capabilities=ModelCapabilities(images=True, video=True, stream=True),
    ),
    ModelConfig(
        id="gemini-3-pro-preview",
        name="Gemini 3 Pro",
        capabilities=ModelCapabilities(images=True, video=True, stream=True),
    ),
]


@dataclass
class UserSettings:
    """Upstream endpoint, credential and configured models."""
    base_url: str = DEFAULT_BASE_URL
    api_key: str = ""
    models: List[ModelConfig] = field(default_factory=lambda: list(DEFAULT_MODELS))

    def find_model(self, model_id: str) -> Optional[ModelConfig]:
        for model in self.models:
            if model.id == model_id:
                return model
        return None


def settings_to_dict(settings: UserSettings) -> Dict[str, Any]:
    return {
        "baseUrl": settings.base_url,
        "apiKey": settings.api_key,
        "models": [model_config_to_dict(m) for m in settings.models],
    }


def settings_from_dict(data: Dict[str, Any]) -> UserSettings:
    """Parse stored settings; an empty or missing model list keeps the defaults."""
    models = data.get("models")
    return UserSettings(
        base_url=data.get("baseUrl") or DEFAULT_BASE_URL,
        api_key=data.get("apiKey") or "",
        models=[model_config_from_dict(m) for m in models]
        if isinstance(models, list) and models else list(DEFAULT_MODELS),
    )


# ============================================================
# Session
# ============================================================

DEFAULT_SESSION_TITLE = "New Chat"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class Session:
    """
    A conversation owned by the caller.

    The core only rewrites `messages`, `title` and `usage` through the
    session reconciler; storage and lifecycle stay with the caller.
    """
    id: str
    model_id: str
    title: str = DEFAULT_SESSION_TITLE
    messages: List[Message] = field(default_factory=list)
    created_at: int = field(default_factory=_now_ms)
    usage: Optional[Usage] = None

    @classmethod
    def new(cls, model_id: str, title: str = DEFAULT_SESSION_TITLE) -> Session:
        created_at = _now_ms()
        return cls(id=str(created_at), model_id=model_id, title=title, created_at=created_at)


def session_to_dict(session: Session) -> Dict[str, Any]:
    result: Dict[str, Any] = {
        "id": session.id,
        "title": session.title,
        "messages": [message_to_dict(m) for m in session.messages],
        "modelId": session.model_id,
        "createdAt": session.created_at,
    }
    if session.usage is not None:
        result["usage"] = session.usage.to_dict()
    return result


def session_from_dict(data: Dict[str, Any]) -> Session:
    usage = data.get("usage")
    return Session(
        id=str(data["id"]),
        model_id=data.get("modelId", ""),
        title=data.get("title") or DEFAULT_SESSION_TITLE,
        messages=[message_from_dict(m) for m in data.get("messages", [])],
        created_at=int(data.get("createdAt") or _now_ms()),
        usage=Usage.from_dict(usage) if isinstance(usage, dict) else None,
    )


# ============================================================
# Relay Request
# ============================================================

@dataclass
class RelayRequest:
    """
    One chat-completion call to forward upstream.

    Unset parameters are dropped on construction; an explicit null is never
    sent upstream.
    """
    messages: List[Message]
    model: str
    api_key: str
    base_url: Optional[str] = None
    parameters: Dict[str, Any] = field(default_factory=dict)
    stream: bool = False

    def __post_init__(self):
        self.parameters = {
            key: value for key, value in (self.parameters or {}).items()
            if value is not None
        }


def relay_request_to_dict(request: RelayRequest) -> Dict[str, Any]:
    """Body accepted by the relay endpoint (POST /api/chat)."""
    result: Dict[str, Any] = {
        "messages": [message_to_dict(m) for m in request.messages],
        "model": request.model,
        "apiKey": request.api_key,
        "parameters": dict(request.parameters),
        "stream": request.stream,
    }
    if request.base_url:
        result["baseUrl"] = request.base_url
    return result
