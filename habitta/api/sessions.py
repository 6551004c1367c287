"""In-process registry of advisor sessions, bounded by size and idle time."""
import time
from collections import OrderedDict
from typing import Callable
from uuid import uuid4

import structlog

from habitta.core.advisor import AdvisorSession

log = structlog.get_logger()


class SessionStore:
    """Least-recently-used map of session id → AdvisorSession.

    A session idle for longer than ``idle_ttl_sec`` is dropped on the next
    access to the store; beyond ``max_sessions`` the least recently used
    session is evicted.
    """

    def __init__(
        self,
        max_sessions: int = 1000,
        idle_ttl_sec: float = 4 * 60 * 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_sessions = max_sessions
        self.idle_ttl_sec = idle_ttl_sec
        self._clock = clock
        self._sessions: OrderedDict[str, tuple[AdvisorSession, float]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def _evict(self) -> None:
        cutoff = self._clock() - self.idle_ttl_sec
        # Oldest entries sit at the front
        while self._sessions:
            session_id, (_, last_used) = next(iter(self._sessions.items()))
            if last_used > cutoff and len(self._sessions) <= self.max_sessions:
                break
            self._sessions.popitem(last=False)
            log.info("advisor.session_evicted", session_id=session_id)

    def add(self, session: AdvisorSession) -> str:
        session_id = str(uuid4())
        self._sessions[session_id] = (session, self._clock())
        self._evict()
        return session_id

    def get(self, session_id: str) -> AdvisorSession | None:
        self._evict()
        entry = self._sessions.get(session_id)
        if entry is None:
            return None
        self._sessions[session_id] = (entry[0], self._clock())
        self._sessions.move_to_end(session_id)
        return entry[0]

    def delete(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def clear(self) -> None:
        self._sessions.clear()
