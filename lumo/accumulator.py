"""
Input accumulation — the per-session state machine between line events and
the execution engine.

A line is appended to the session's buffer and the whole buffer is offered
to the engine's readiness oracle:

  complete   → exit check, then dispatch; buffer resets; primary prompt
  incomplete → buffer kept; continuation prompt

Every handler here is synchronous and runs to completion, so two sessions
never see each other's buffers mid-update.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Optional

import structlog

from lumo.engine import ExecutionEngine
from lumo.prompt import PromptSelector
from lumo.session import Session, SessionManager

if TYPE_CHECKING:
    from lumo.shutdown import ExitHandler

logger = structlog.get_logger(__name__)

CloseHandler = Callable[[Session], None]


class InputAccumulator:
    """Feeds session lines to the engine once they form a complete unit."""

    def __init__(
        self,
        engine: ExecutionEngine,
        manager: SessionManager,
        prompts: Optional[PromptSelector] = None,
        exit_handler: Optional["ExitHandler"] = None,
    ) -> None:
        self._engine = engine
        self._manager = manager
        self._prompts = prompts if prompts is not None else PromptSelector(engine)
        self._exit_handler = exit_handler

    @property
    def prompts(self) -> PromptSelector:
        return self._prompts

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def bind(self, session: Session, on_close: CloseHandler) -> None:
        """Register the session's line, interrupt and close handlers."""
        session.editor.on("line", lambda line: self.accept(session, line))
        session.editor.on("SIGINT", lambda: self.interrupt(session))
        session.editor.on("close", lambda: on_close(session))

    def start(self, session: Session) -> None:
        self._show_prompt(session, self._prompts.select(session.buffer))

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def accept(self, session: Session, line: str) -> None:
        """Append *line* to the session buffer and dispatch if complete."""
        if not self._manager.is_live(session):
            logger.debug("accumulator.line_for_closed_session", session_id=session.id)
            return

        session.buffer += line + "\n"
        text = session.buffer
        try:
            ready = self._engine.is_ready(text)
        except Exception as e:
            logger.error("accumulator.readiness_failed", session_id=session.id, error=str(e), exc_info=True)
            self._report_error(session, e)
            session.reset()
            self._show_prompt(session, self._prompts.primary())
            return

        if not ready:
            indent = self._continuation_indent(text)
            self._show_prompt(session, self._prompts.secondary(), indent)
            return

        if self._exit_handler is not None and self._exit_handler.handle(text, session):
            return

        self._dispatch(session, text)
        if self._manager.is_live(session):
            self._show_prompt(session, self._prompts.primary())

    def interrupt(self, session: Session) -> None:
        """Discard partial input and start over with the primary prompt."""
        if not self._manager.is_live(session):
            return
        if session.buffer:
            logger.debug("accumulator.buffer_discarded", session_id=session.id)
        session.reset()
        self._show_prompt(session, self._prompts.primary())

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _dispatch(self, session: Session, text: str) -> None:
        logger.debug("accumulator.dispatch", session_id=session.id, text=text)
        try:
            self._engine.execute(text, session)
        except Exception as e:
            logger.error("accumulator.execute_failed", session_id=session.id, error=str(e), exc_info=True)
            self._report_error(session, e)
        finally:
            session.reset()

    def _continuation_indent(self, text: str) -> int:
        try:
            return max(0, int(self._engine.continuation_indent(text)))
        except Exception as e:
            logger.debug("accumulator.indent_failed", error=str(e))
            return 0

    @staticmethod
    def _show_prompt(session: Session, text: str, indent: int = 0) -> None:
        session.editor.set_prompt(text)
        session.editor.prompt(indent=indent)

    @staticmethod
    def _report_error(session: Session, exc: Exception) -> None:
        try:
            session.output.write(f"Error: {exc}\n")
        except Exception as e:
            logger.debug("accumulator.error_report_failed", session_id=session.id, error=str(e))
