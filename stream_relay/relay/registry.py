# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from .session import RelaySession


class SessionRegistry:
    """Process-wide table of active relay sessions.

    Bookkeeping only: the registry never touches a session's transcoder, it
    asks the session to shut itself down. All access happens on the event
    loop and no method awaits while mutating the table.
    """

    def __init__(self):
        self._sessions: dict[str, "RelaySession"] = {}
        self.started_at = time.monotonic()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    @property
    def uptime(self) -> float:
        """Seconds since the registry (and so the server) was created."""
        return time.monotonic() - self.started_at

    def register(self, session: "RelaySession") -> None:
        if session.id in self._sessions:
            raise ValueError(f"session {session.id} already registered")
        self._sessions[session.id] = session
        logging.getLogger("registry").debug(f"registered {session.id} (active={len(self._sessions)})")

    def deregister(self, session_id: str) -> Optional["RelaySession"]:
        """Remove a session; returns it, or None if it was not registered."""
        session = self._sessions.pop(session_id, None)
        if session is not None:
            logging.getLogger("registry").debug(f"deregistered {session_id} (active={len(self._sessions)})")
        return session

    def get(self, session_id: str) -> Optional["RelaySession"]:
        return self._sessions.get(session_id)

    def sessions(self) -> list["RelaySession"]:
        """Snapshot of the registered sessions."""
        return list(self._sessions.values())

    async def shutdown(self, reason: str = "server shutdown") -> int:
        """Tear down every registered session; returns how many there were."""
        sessions = self.sessions()
        if not sessions:
            return 0

        logging.getLogger("registry").info(f"shutting down {len(sessions)} session(s)")
        results = await asyncio.gather(*(s.shutdown(reason) for s in sessions), return_exceptions=True)
        for session, result in zip(sessions, results):
            if isinstance(result, BaseException):
                logging.getLogger("registry").error(f"[{session.id}] shutdown error: {result!r}")
                # Never leave a stale entry behind
                self.deregister(session.id)
        return len(sessions)

    def list(self) -> list[dict[str, Any]]:
        """Summaries of all registered sessions for introspection."""
        return [s.summary() for s in self.sessions()]
