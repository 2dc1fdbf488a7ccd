"""
chatrelay Sessions Module

Reconciles relay results into caller-owned sessions and drives one chat
submission end to end.
"""

from .reconciler import (
    SessionReconciler,
    derive_title,
    truncate_title,
    TITLE_MAX_LENGTH,
)
from .service import (
    ChatService,
    compose_user_content,
    new_session_title,
    supports_images,
    supports_files,
)
from .store import SessionStore, InMemorySessionStore

__all__ = [
    # Reconciler
    "SessionReconciler",
    "derive_title",
    "truncate_title",
    "TITLE_MAX_LENGTH",
    # Service
    "ChatService",
    "compose_user_content",
    "new_session_title",
    "supports_images",
    "supports_files",
    # Store
    "SessionStore",
    "InMemorySessionStore",
]
