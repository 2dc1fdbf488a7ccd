"""
chatrelay - OpenAI-compatible Chat Relay

Relays conversations to any OpenAI-compatible chat-completion backend
(configurable base URL, key and model) in buffered or streamed mode,
decodes the event stream incrementally and reconciles it into a session.
"""

__version__ = "1.0.0"
__author__ = "chatrelay"
