"""
Socket Listener — serves the shell to TCP clients.

Protocol: plain newline-delimited UTF-8 text. Each accepted connection
becomes one remote session with its own buffer and prompt; closing the
connection destroys that session and nothing else.

Closing the listener only stops new connections. Sessions that are already
open keep running until they disconnect or the shell exits.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import structlog

from lumo.accumulator import InputAccumulator
from lumo.config import DEFAULT_SOCKET_HOST
from lumo.editor import LineEditor, StreamLineEditor
from lumo.session import Session, SessionManager

logger = structlog.get_logger(__name__)


class SocketListenerError(Exception):
    """Raised when the listening socket cannot be opened."""


class SocketListener:
    """Accepts connections and turns each one into a remote session."""

    def __init__(
        self,
        manager: SessionManager,
        accumulator: InputAccumulator,
        *,
        max_connections: int = 16,
    ) -> None:
        self._manager = manager
        self._accumulator = accumulator
        self._max_connections = max(1, int(max_connections))
        self._server: Optional[asyncio.AbstractServer] = None

    @property
    def is_serving(self) -> bool:
        return self._server is not None and self._server.is_serving()

    @property
    def port(self) -> Optional[int]:
        """The bound port (useful after listening on port 0)."""
        if self._server is None or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    async def listen(self, port: int, host: str = DEFAULT_SOCKET_HOST) -> None:
        if self._server is not None:
            raise SocketListenerError("listener is already open")
        try:
            self._server = await asyncio.start_server(self._handle_connection, host, port)
        except OSError as e:
            raise SocketListenerError(f"cannot listen on {host}:{port}: {e}") from e
        logger.info("listener.started", host=host, port=self.port)

    def close(self) -> None:
        """Stop accepting connections and release the listening socket."""
        if self._server is None:
            return
        self._server.close()
        self._server = None
        logger.info("listener.closed")

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def accept_connection(self, editor: LineEditor, peer: Optional[str] = None) -> Session:
        """Register a remote session for *editor* and show its first prompt."""
        session = self._manager.create_remote_session(editor, peer=peer)
        self._accumulator.bind(session, on_close=self._on_session_closed)
        self._accumulator.start(session)
        return session

    def _on_session_closed(self, session: Session) -> None:
        self._manager.destroy(session)

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Serve one client from connect to disconnect."""
        editor = StreamLineEditor(reader, writer)

        if self._manager.remote_count() >= self._max_connections:
            logger.warning(
                "listener.connection_rejected_max_connections",
                peer=editor.peer,
                max_connections=self._max_connections,
            )
            editor.output.write("max connections reached\n")
            editor.close()
            try:
                await writer.wait_closed()
            except (ConnectionResetError, BrokenPipeError) as e:
                logger.debug("listener.reject_close_failed", error=str(e))
            return

        session = self.accept_connection(editor, peer=editor.peer)
        try:
            await editor.run()
        except Exception as e:
            logger.error("listener.session_error", session_id=session.id, error=str(e), exc_info=True)
        finally:
            self._manager.destroy(session)
