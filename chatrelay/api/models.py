"""
chatrelay - API Request Models

Pydantic models for the relay endpoint body.
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..config import get_default_model
from ..core.models import Message, RelayRequest, message_from_dict


class RoleEnum(str, Enum):
    """Message roles."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class MessageInput(BaseModel):
    """
    One conversation turn.

    Content parts are validated leniently: anything that is not a known part
    shape is forwarded upstream as-is.
    """
    role: RoleEnum
    content: Optional[Union[str, List[Any]]] = None

    def to_message(self) -> Message:
        return message_from_dict({"role": self.role.value, "content": self.content})


class RelayRequestBody(BaseModel):
    """
    Body of POST /api/chat.

    `apiKey` is optional here so that a missing key is answered with the
    relay's own 400 error rather than a validation error.
    """
    model_config = ConfigDict(populate_by_name=True)

    messages: List[MessageInput] = Field(
        ...,
        description="Conversation so far, oldest first"
    )
    model: str = Field(
        default_factory=get_default_model,
        description="Upstream model id"
    )
    base_url: Optional[str] = Field(
        default=None,
        alias="baseUrl",
        description="Upstream API root; the relay default when omitted"
    )
    api_key: Optional[str] = Field(
        default=None,
        alias="apiKey",
        description="Upstream bearer token"
    )
    parameters: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Sampling options; null entries are dropped"
    )
    stream: bool = Field(
        default=False,
        description="Proxy the upstream event stream instead of a JSON body"
    )

    def to_relay_request(self) -> RelayRequest:
        return RelayRequest(
            messages=[m.to_message() for m in self.messages],
            model=self.model,
            api_key=self.api_key or "",
            base_url=self.base_url or None,
            parameters=self.parameters or {},
            stream=self.stream,
        )


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str


__all__ = [
    "RoleEnum",
    "MessageInput",
    "RelayRequestBody",
    "HealthResponse",
]
