"""
chatrelay Adapters

- ProviderRelay: forwards chat-completion calls to an OpenAI-compatible upstream
- RelayClient: calls a running relay over its HTTP endpoint
"""

from .base import AdapterConfig, BaseAdapter, ByteStream, RelayResult
from .openai_adapter import ProviderRelay, build_chat_payload, resolve_base_url
from .relay_client import RelayClient

__all__ = [
    "AdapterConfig",
    "BaseAdapter",
    "ByteStream",
    "RelayResult",
    "ProviderRelay",
    "RelayClient",
    "build_chat_payload",
    "resolve_base_url",
]
