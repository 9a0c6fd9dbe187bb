"""
Exit handling — recognises exit commands and tears the whole shell down.

Shutdown order:
  1. stop accepting socket connections
  2. destroy every session (local and remote)
  3. run flush callbacks (history, terminal mode)
  4. terminate with status 0

Shutdown runs at most once, whichever session or signal triggers it first.
"""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING, Callable, Iterable, Optional

import structlog

from lumo.session import Session, SessionManager

if TYPE_CHECKING:
    from lumo.listener import SocketListener

logger = structlog.get_logger(__name__)

EXIT_COMMANDS = frozenset({"exit", "quit", ":quit", ":repl/quit", ":cljs/quit"})

TerminateFn = Callable[[int], None]


def is_exit_command(text: str, commands: Iterable[str] = EXIT_COMMANDS) -> bool:
    """True if *text*, minus surrounding whitespace, is an exit command."""
    return text.strip() in commands


class ExitHandler:
    """Coordinates global shutdown of the listener and all sessions."""

    def __init__(
        self,
        manager: SessionManager,
        *,
        listener: Optional["SocketListener"] = None,
        terminate: Optional[TerminateFn] = None,
        commands: Iterable[str] = EXIT_COMMANDS,
    ) -> None:
        self._manager = manager
        self._listener = listener
        self._terminate = terminate if terminate is not None else sys.exit
        self._commands = frozenset(commands)
        self._flush_callbacks: list[Callable[[], object]] = []
        self._triggered = False

    @property
    def triggered(self) -> bool:
        return self._triggered

    @property
    def commands(self) -> frozenset[str]:
        return self._commands

    def bind_listener(self, listener: "SocketListener") -> None:
        self._listener = listener

    def add_flush(self, callback: Callable[[], object]) -> None:
        """Register a callback to run after sessions are destroyed."""
        self._flush_callbacks.append(callback)

    def handle(self, text: str, session: Optional[Session] = None) -> bool:
        """Shut down if *text* is an exit command. Returns True if it was."""
        if not is_exit_command(text, self._commands):
            return False
        session_id = session.id if session is not None else None
        self.shutdown(reason="exit_command", session_id=session_id)
        return True

    def shutdown(self, reason: str, session_id: Optional[int] = None) -> None:
        if self._triggered:
            logger.debug("exit.already_triggered", reason=reason)
            return
        self._triggered = True
        logger.info("exit.shutdown", reason=reason, session_id=session_id)

        if self._listener is not None:
            try:
                self._listener.close()
            except Exception as e:
                logger.warning("exit.listener_close_failed", error=str(e))

        destroyed = self._manager.destroy_all()

        for callback in self._flush_callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning("exit.flush_failed", callback=getattr(callback, "__name__", repr(callback)), error=str(e))

        logger.info("exit.complete", sessions_destroyed=destroyed)
        self._terminate(0)
