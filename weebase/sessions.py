"""Session store.

Maps a session id to its one :class:`ActiveConnection`.  Attaching a new
connection closes the one it replaces; detaching or expiring closes too.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Protocol

from weebase.connections import ActiveConnection, ConnectionManager
from weebase.logging import get_logger

log = get_logger(__name__)


class SessionStore(Protocol):
    def get(self, session_id: str) -> ActiveConnection | None: ...

    def attach(self, session_id: str, conn: ActiveConnection) -> None: ...

    def detach(self, session_id: str) -> ActiveConnection | None: ...

    def expire(self, idle_seconds: float) -> list[str]: ...


class InMemorySessionStore:
    def __init__(self) -> None:
        self._sessions: dict[str, ActiveConnection] = {}
        self._lock = threading.RLock()

    def get(self, session_id: str) -> ActiveConnection | None:
        with self._lock:
            return self._sessions.get(session_id)

    def attach(self, session_id: str, conn: ActiveConnection) -> None:
        with self._lock:
            previous = self._sessions.get(session_id)
            self._sessions[session_id] = conn
        if previous is not None and previous is not conn:
            ConnectionManager.disconnect(previous)

    def detach(self, session_id: str) -> ActiveConnection | None:
        """Remove and close the session's connection. No-op when absent."""
        with self._lock:
            conn = self._sessions.pop(session_id, None)
        ConnectionManager.disconnect(conn)
        return conn

    def expire(self, idle_seconds: float) -> list[str]:
        """Close connections idle longer than *idle_seconds*; 0 disables expiry."""
        if idle_seconds <= 0:
            return []
        now = datetime.now(timezone.utc)
        with self._lock:
            stale = [
                sid for sid, conn in self._sessions.items()
                if conn.idle_seconds(now) > idle_seconds
            ]
            expired = [(sid, self._sessions.pop(sid)) for sid in stale]
        for sid, conn in expired:
            ConnectionManager.disconnect(conn)
            log.info("session_expired", session_id=sid, connection_id=conn.id)
        return stale

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
