"""
Shell — wires the session core together and runs it until exit.

Startup order:
  1. open the socket listener (if a port is configured)
  2. pick the local input mode and create the local session (id 0)
  3. start delivering terminal input and install signal handlers
  4. wait for the exit handler to report a status

Either setup step may raise (``SocketListenerError``,
``TerminalUnavailableError``); the terminal is restored and the error
propagates to the caller.
"""

from __future__ import annotations

import asyncio
import signal
import sys
from typing import Optional, TextIO

import structlog
from prompt_toolkit.history import FileHistory, History, InMemoryHistory

from lumo import __version__
from lumo.accumulator import InputAccumulator
from lumo.config import LumoConfig
from lumo.editor import TerminalLineEditor
from lumo.engine import ExecutionEngine, PythonEngine
from lumo.listener import SocketListener
from lumo.session import Session, SessionManager
from lumo.shutdown import ExitHandler
from lumo.terminal import PlatformCapabilities, TerminalController, TerminalInput

logger = structlog.get_logger(__name__)


class Shell:
    """One local session plus an optional socket listener over one engine."""

    def __init__(
        self,
        config: LumoConfig,
        *,
        engine: Optional[ExecutionEngine] = None,
        platform: Optional[PlatformCapabilities] = None,
        stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None,
    ) -> None:
        self._config = config
        self._platform = platform
        self._stdin = stdin
        self._stdout = stdout if stdout is not None else sys.stdout

        self.engine = engine if engine is not None else PythonEngine(config.repl.namespace)
        self.manager = SessionManager()
        self.exit_handler = ExitHandler(self.manager, terminate=self._request_exit)
        self.accumulator = InputAccumulator(self.engine, self.manager, exit_handler=self.exit_handler)
        self.listener = SocketListener(
            self.manager,
            self.accumulator,
            max_connections=config.socket.max_connections,
        )
        self.exit_handler.bind_listener(self.listener)

        self.controller: Optional[TerminalController] = None
        self.local_session: Optional[Session] = None
        self._exit_future: Optional[asyncio.Future[int]] = None
        self._signals: list[signal.Signals] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> int:
        """Run until an exit command, end of local input, or SIGTERM.

        Returns the process exit status.
        """
        loop = asyncio.get_running_loop()
        self._exit_future = loop.create_future()
        try:
            if self._config.socket.enabled:
                await self.listener.listen(self._config.socket.port, self._config.socket.host)
            self.start_local()
            self.controller.stream.start(loop)
            self._install_signal_handlers(loop)
            return await self._exit_future
        finally:
            self._remove_signal_handlers(loop)
            if self.controller is not None:
                self.controller.stream.stop()
                self.controller.restore()
            self.listener.close()
            self.manager.destroy_all()

    def start_local(self) -> Session:
        """Create the local session and connect it to the terminal."""
        self.controller = TerminalController(TerminalInput(self._stdin), self._platform)
        dumb = self.controller.select_mode(self._config.repl.dumb_terminal)

        editor = TerminalLineEditor(self._stdout, terminal=not dumb, history=self._history())
        self.controller.attach(editor)
        self.exit_handler.add_flush(self.controller.restore)

        session = self.manager.create_local_session(editor)
        self.accumulator.bind(session, on_close=self._on_local_closed)
        if self._config.repl.banner:
            editor.output.write(self._banner())
        self.accumulator.start(session)
        self.local_session = session
        return session

    def _history(self) -> History:
        """Persistent history when enabled, otherwise in memory for this run."""
        cfg = self._config.history
        if not cfg.enabled:
            return InMemoryHistory()
        try:
            cfg.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning("shell.history_unavailable", path=str(cfg.path), error=str(e))
            return InMemoryHistory()
        return FileHistory(str(cfg.path))

    def _banner(self) -> str:
        commands = " or ".join(sorted(self.exit_handler.commands))
        lines = [f"Lumo {__version__}", f"Exit: Control+D or {commands}"]
        if self.listener.port is not None:
            lines.append(f"Socket REPL listening on {self._config.socket.host}:{self.listener.port}")
        return "\n".join(lines) + "\n\n"

    def _on_local_closed(self, session: Session) -> None:
        self.exit_handler.shutdown(reason="local_session_closed", session_id=session.id)

    def _request_exit(self, status: int) -> None:
        if self._exit_future is not None and not self._exit_future.done():
            self._exit_future.set_result(status)

    # ------------------------------------------------------------------
    # Signal handling
    # ------------------------------------------------------------------

    def _on_sigint(self) -> None:
        session = self.local_session
        if session is not None and self.manager.is_live(session):
            session.editor.interrupt()

    def _on_sigterm(self) -> None:
        self.exit_handler.shutdown(reason="signal_sigterm")

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        """Install SIGINT/SIGTERM handlers where the platform allows it."""
        for sig, handler in ((signal.SIGINT, self._on_sigint), (signal.SIGTERM, self._on_sigterm)):
            try:
                loop.add_signal_handler(sig, handler)
                self._signals.append(sig)
            except (NotImplementedError, RuntimeError):
                logger.debug("shell.signal_handler_unsupported", signal=sig.name)

    def _remove_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in self._signals:
            loop.remove_signal_handler(sig)
        self._signals.clear()
