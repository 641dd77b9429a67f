"""
Session registry - id -> live session map.

All access goes through one lock held only for the map operation itself;
no engine work ever happens under it.
"""

import itertools
import logging
import threading
import time
from typing import Dict, List, Optional

from stepgen.session.task import CompletionSession, SessionId

logger = logging.getLogger(__name__)


class SessionRegistry:
    """
    Thread-safe map of live sessions.

    Example:
        ```python
        registry = SessionRegistry()
        session_id = registry.next_id()
        registry.add(CompletionSession(session_id, "Hi", max_tokens=5))
        registry.get(session_id)
        registry.remove(session_id)
        ```
    """

    def __init__(self, first_id: int = 1):
        self._sessions: Dict[SessionId, CompletionSession] = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(first_id)

    def next_id(self) -> SessionId:
        with self._lock:
            return next(self._ids)

    def add(self, session: CompletionSession) -> None:
        with self._lock:
            if session.id in self._sessions:
                raise KeyError(f"Session {session.id} is already registered")
            self._sessions[session.id] = session
        logger.debug(f"Registered session {session.id}")

    def get(self, session_id: SessionId) -> Optional[CompletionSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def remove(self, session_id: SessionId) -> Optional[CompletionSession]:
        """Remove and return a session; None if it is not registered."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is not None:
            logger.debug(f"Removed session {session_id}")
        return session

    def ids(self) -> List[SessionId]:
        with self._lock:
            return list(self._sessions)

    def idle_ids(self, max_idle_seconds: float) -> List[SessionId]:
        """Ids of sessions with no step for longer than ``max_idle_seconds``."""
        now = time.monotonic()
        with self._lock:
            return [
                session_id
                for session_id, session in self._sessions.items()
                if session.idle_seconds(now) > max_idle_seconds
            ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: SessionId) -> bool:
        with self._lock:
            return session_id in self._sessions
