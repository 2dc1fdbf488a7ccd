"""
chatrelay - Configuration

Environment-driven settings for the relay server and its upstream calls.
"""

import os
from typing import List


DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-3.5-turbo"
DEFAULT_UPSTREAM_TIMEOUT = 120.0


def get_default_base_url() -> str:
    """Upstream root used when a request carries no base URL."""
    return os.getenv("RELAY_DEFAULT_BASE_URL", "").strip() or DEFAULT_BASE_URL


def get_default_model() -> str:
    """Model id used when a relay request omits it."""
    return os.getenv("RELAY_DEFAULT_MODEL", "").strip() or DEFAULT_MODEL


def get_upstream_timeout() -> float:
    """Timeout in seconds for upstream chat-completion calls."""
    raw = os.getenv("RELAY_UPSTREAM_TIMEOUT", "")
    if not raw.strip():
        return DEFAULT_UPSTREAM_TIMEOUT
    try:
        value = float(raw)
    except ValueError:
        raise ValueError("RELAY_UPSTREAM_TIMEOUT must be a number of seconds")
    if value <= 0:
        raise ValueError("RELAY_UPSTREAM_TIMEOUT must be positive")
    return value


def get_cors_allowed_origins() -> List[str]:
    """Parse CORS_ALLOW_ORIGINS from environment (comma separated)."""
    raw = os.getenv("CORS_ALLOW_ORIGINS", "")
    if not raw.strip():
        return ["*"]
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def get_server_host() -> str:
    return os.getenv("RELAY_HOST", "0.0.0.0")


def get_server_port() -> int:
    return int(os.getenv("RELAY_PORT", "8000"))
