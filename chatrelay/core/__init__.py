"""
chatrelay Core Module

Data model, error taxonomy and content normalization shared by the relay,
the stream decoder and the session reconciler.
"""

from .models import (
    # Enums
    Role,
    ContentType,

    # Content
    TextPart,
    ImagePart,
    FilePart,
    FileRefPart,
    RawPart,
    ContentPart,
    MessageContent,
    Message,

    # Accounting & configuration
    Usage,
    ModelCapabilities,
    ModelParameters,
    ModelConfig,
    UserSettings,
    DEFAULT_MODELS,

    # Session & request
    Session,
    DEFAULT_SESSION_TITLE,
    RelayRequest,

    # Serialization
    content_part_from_dict,
    content_part_to_dict,
    message_from_dict,
    message_to_dict,
    model_config_from_dict,
    model_config_to_dict,
    settings_from_dict,
    settings_to_dict,
    session_from_dict,
    session_to_dict,
    relay_request_to_dict,
)

from .errors import (
    ErrorKind,
    ErrorDetails,
    RelayException,
    MissingCredentialError,
    UpstreamHttpError,
    ReaderUnavailableError,
    TransportError,
    StreamInterruptedError,
    StreamParseError,
    classify_transport_error,
    extract_error_message,
    error_turn_text,
    create_stream_error_chunk,
)

from .content import (
    normalize_content,
    normalize_message,
    normalize_messages,
    resolve_file_ref,
)

__all__ = [
    # Enums
    "Role",
    "ContentType",

    # Content
    "TextPart",
    "ImagePart",
    "FilePart",
    "FileRefPart",
    "RawPart",
    "ContentPart",
    "MessageContent",
    "Message",

    # Accounting & configuration
    "Usage",
    "ModelCapabilities",
    "ModelParameters",
    "ModelConfig",
    "UserSettings",
    "DEFAULT_MODELS",

    # Session & request
    "Session",
    "DEFAULT_SESSION_TITLE",
    "RelayRequest",

    # Serialization
    "content_part_from_dict",
    "content_part_to_dict",
    "message_from_dict",
    "message_to_dict",
    "model_config_from_dict",
    "model_config_to_dict",
    "settings_from_dict",
    "settings_to_dict",
    "session_from_dict",
    "session_to_dict",
    "relay_request_to_dict",

    # Errors
    "ErrorKind",
    "ErrorDetails",
    "RelayException",
    "MissingCredentialError",
    "UpstreamHttpError",
    "ReaderUnavailableError",
    "TransportError",
    "StreamInterruptedError",
    "StreamParseError",
    "classify_transport_error",
    "extract_error_message",
    "error_turn_text",
    "create_stream_error_chunk",

    # Normalizer
    "normalize_content",
    "normalize_message",
    "normalize_messages",
    "resolve_file_ref",
]
