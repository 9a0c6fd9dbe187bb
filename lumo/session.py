"""
Session management for the local terminal and socket clients.

Every client gets a Session holding its identity, its partially accumulated
input, and its line editor. The SessionManager owns the SessionRegistry,
the single record of which sessions are alive and which remote id comes
next.

Identity rules:
  - the local session is always id 0
  - remote sessions get 1, 2, 3, ... in order of acceptance
  - ids are never reused, even after the session is destroyed

All mutation happens inside event handlers on the event loop thread, so the
registry needs no locking.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Iterator, Optional

import structlog

from lumo.editor import LineEditor, OutputSink

logger = structlog.get_logger(__name__)

LOCAL_SESSION_ID = 0


class SessionError(Exception):
    """Raised when a session cannot be created."""


@dataclass
class Session:
    """Per-client state for one local or remote session."""

    id: int
    editor: LineEditor
    buffer: str = ""
    peer: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    closed: bool = False

    @property
    def output(self) -> OutputSink:
        return self.editor.output

    @property
    def is_local(self) -> bool:
        return self.id == LOCAL_SESSION_ID

    def reset(self) -> None:
        self.buffer = ""


@dataclass
class SessionRegistry:
    """Live sessions by id, plus the counter for the next remote id."""

    sessions: dict[int, Session] = field(default_factory=dict)
    next_remote_id: int = 1

    def __len__(self) -> int:
        return len(self.sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self.sessions

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self.sessions.values()))


class SessionManager:
    """
    Creates, tracks and destroys sessions.

    Components that need to create or destroy sessions receive the manager
    explicitly; there is no module-level registry.
    """

    def __init__(self, registry: Optional[SessionRegistry] = None) -> None:
        self._registry = registry if registry is not None else SessionRegistry()

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_local_session(self, editor: LineEditor) -> Session:
        if LOCAL_SESSION_ID in self._registry:
            raise SessionError("a local session already exists")
        session = Session(id=LOCAL_SESSION_ID, editor=editor)
        self._registry.sessions[session.id] = session
        logger.info("session.created", session_id=session.id, local=True)
        return session

    def create_remote_session(self, editor: LineEditor, peer: Optional[str] = None) -> Session:
        session_id = self._registry.next_remote_id
        self._registry.next_remote_id += 1
        session = Session(id=session_id, editor=editor, peer=peer)
        self._registry.sessions[session_id] = session
        logger.info("session.created", session_id=session_id, peer=peer)
        return session

    # ------------------------------------------------------------------
    # Destruction
    # ------------------------------------------------------------------

    def destroy(self, session: Session) -> bool:
        """Remove *session* and release its editor and output sink.

        Returns False if the session was not registered (already destroyed).
        """
        current = self._registry.sessions.get(session.id)
        if current is not session:
            return False
        del self._registry.sessions[session.id]
        session.closed = True
        session.reset()
        try:
            session.editor.close()
        except Exception as e:
            logger.warning("session.close_failed", session_id=session.id, error=str(e))
        logger.info("session.destroyed", session_id=session.id, remaining=len(self._registry))
        return True

    def destroy_all(self) -> int:
        """Destroy every registered session. Returns how many were destroyed."""
        destroyed = 0
        for session in self._registry:
            if self.destroy(session):
                destroyed += 1
        return destroyed

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def get(self, session_id: int) -> Optional[Session]:
        return self._registry.sessions.get(session_id)

    def is_live(self, session: Session) -> bool:
        return not session.closed and self._registry.sessions.get(session.id) is session

    def sessions(self) -> list[Session]:
        return list(self._registry)

    def remote_count(self) -> int:
        return sum(1 for session in self._registry if not session.is_local)

    def __len__(self) -> int:
        return len(self._registry)
