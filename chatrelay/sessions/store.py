"""
chatrelay - Session Store Interface

Persistence is the caller's concern. The chat service never touches a
store; whoever owns the sessions loads them before and saves them after.
"""

import copy
from typing import List, Optional, Protocol

from ..core.models import Session


class SessionStore(Protocol):
    """Loads and saves the full list of sessions."""

    def load(self) -> List[Session]:
        ...

    def save(self, sessions: List[Session]) -> None:
        ...


class InMemorySessionStore:
    """Process-local store; keeps deep copies so callers cannot alias it."""

    def __init__(self, sessions: Optional[List[Session]] = None):
        self._sessions: List[Session] = copy.deepcopy(sessions or [])

    def load(self) -> List[Session]:
        return copy.deepcopy(self._sessions)

    def save(self, sessions: List[Session]) -> None:
        self._sessions = copy.deepcopy(sessions)
