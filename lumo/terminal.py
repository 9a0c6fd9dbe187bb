"""
Terminal control for the local session.

Decides between raw (keypress-level) input and dumb (line-buffered) input,
switches the terminal mode, and delivers input to the local line editor on
the event loop thread.

Policy:
  - if the platform cannot do raw input, the session is dumb regardless
    of configuration
  - otherwise the ``dumb_terminal`` setting decides

Raw input goes through prompt_toolkit: its ``Input`` owns the termios
switch and its VT100 parser turns bytes into ``KeyPress`` objects, keeping
partial escape sequences until the rest arrives.

The platform check is injected (``PlatformCapabilities``) so callers and
tests never branch on ``sys.platform`` themselves.
"""

from __future__ import annotations

import asyncio
import sys
import threading
from contextlib import ExitStack
from typing import Any, Optional, Protocol, TextIO

import structlog
from prompt_toolkit.input import Input, create_input

from lumo.editor import EventEmitter, TerminalLineEditor

logger = structlog.get_logger(__name__)


class TerminalUnavailableError(Exception):
    """Raised when the local terminal's input stream cannot be used."""


class PlatformCapabilities(Protocol):
    def supports_raw_mode(self, stream: "TerminalInput") -> bool: ...


class SystemPlatform:
    """Raw mode needs a non-Windows platform and a real TTY."""

    def __init__(self, platform: str = sys.platform) -> None:
        self.platform = platform

    def supports_raw_mode(self, stream: "TerminalInput") -> bool:
        if self.platform.startswith("win"):
            return False
        return stream.isatty()


class TerminalInput(EventEmitter):
    """
    The process's own input stream.

    Emits ``"keypress"`` with a prompt_toolkit ``KeyPress`` (raw mode),
    ``"line"`` (line-buffered mode) and ``"end"`` when input is exhausted.
    All events are delivered on the event loop thread.
    """

    def __init__(self, stream: Optional[TextIO] = None, *, keys: Optional[Input] = None) -> None:
        super().__init__()
        stream = stream if stream is not None else sys.stdin
        if stream is None or getattr(stream, "closed", False):
            raise TerminalUnavailableError("standard input is not available")
        self.stream = stream
        self._keys = keys
        self._raw_mode: Optional[ExitStack] = None
        self._attached: Optional[ExitStack] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stopped = False

    @property
    def is_raw(self) -> bool:
        return self._raw_mode is not None

    def isatty(self) -> bool:
        try:
            return bool(self.stream.isatty())
        except (ValueError, OSError):
            return False

    def fileno(self) -> int:
        try:
            return self.stream.fileno()
        except (ValueError, OSError) as e:
            raise TerminalUnavailableError(f"standard input has no file descriptor: {e}") from e

    @property
    def keys(self) -> Input:
        """The prompt_toolkit input used for keypress delivery."""
        if self._keys is None:
            self.fileno()
            self._keys = create_input(self.stream)
        return self._keys

    # ------------------------------------------------------------------
    # Mode control
    # ------------------------------------------------------------------

    def set_raw_mode(self, enabled: bool) -> None:
        """Turn keypress-level input on or off.

        Canonical mode, echo and signal keys are disabled so every key,
        Ctrl+C included, reaches the line editor. The previous attributes
        are restored when disabling.
        """
        if enabled:
            if self._raw_mode is not None:
                return
            stack = ExitStack()
            try:
                stack.enter_context(self.keys.raw_mode())
            except OSError as e:
                stack.close()
                raise TerminalUnavailableError(f"cannot enable raw mode: {e}") from e
            self._raw_mode = stack
        elif self._raw_mode is not None:
            stack, self._raw_mode = self._raw_mode, None
            stack.close()

    # ------------------------------------------------------------------
    # Input delivery
    # ------------------------------------------------------------------

    def start(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop if loop is not None else asyncio.get_running_loop()
        self._stopped = False
        if self.is_raw:
            stack = ExitStack()
            stack.enter_context(self.keys.attach(self.read_available))
            self._attached = stack
        else:
            threading.Thread(target=self._read_lines, name="lumo-stdin", daemon=True).start()

    def stop(self) -> None:
        self._stopped = True
        if self._attached is not None:
            stack, self._attached = self._attached, None
            stack.close()

    def read_available(self) -> None:
        """Emit one ``"keypress"`` per key read so far, then ``"end"`` at EOF."""
        keys = self.keys
        for key_press in keys.read_keys():
            self.emit("keypress", key_press)
        if keys.closed:
            self.stop()
            self.emit("end")

    def _read_lines(self) -> None:
        """Blocking line reader; runs in a daemon thread in line-buffered mode."""
        while not self._stopped:
            try:
                line = self.stream.readline()
            except (OSError, ValueError) as e:
                logger.warning("terminal.read_failed", error=str(e))
                line = ""
            if not line:
                self._post("end")
                return
            self._post("line", line)

    def _post(self, event: str, *args: Any) -> None:
        loop = self._loop
        if loop is None:
            return
        try:
            loop.call_soon_threadsafe(self._emit_unless_stopped, event, *args)
        except RuntimeError:
            # Loop already closed during shutdown.
            pass

    def _emit_unless_stopped(self, event: str, *args: Any) -> None:
        if not self._stopped:
            self.emit(event, *args)


class TerminalController:
    """Chooses the local input mode and connects the terminal to its editor."""

    def __init__(
        self,
        stream: TerminalInput,
        platform: Optional[PlatformCapabilities] = None,
    ) -> None:
        self._stream = stream
        self._platform = platform if platform is not None else SystemPlatform()
        self._dumb: Optional[bool] = None
        self._raw_enabled = False

    @property
    def dumb(self) -> Optional[bool]:
        return self._dumb

    @property
    def stream(self) -> TerminalInput:
        return self._stream

    def select_mode(self, dumb_terminal: bool) -> bool:
        """Resolve dumb-terminal mode. Returns True for dumb mode."""
        raw_supported = self._platform.supports_raw_mode(self._stream)
        self._dumb = not raw_supported or bool(dumb_terminal)
        logger.info(
            "terminal.mode_selected",
            dumb=self._dumb,
            raw_supported=raw_supported,
            requested_dumb=bool(dumb_terminal),
        )
        return self._dumb

    def attach(self, editor: TerminalLineEditor) -> None:
        """Route terminal input to *editor*, enabling raw mode unless dumb."""
        if self._dumb is None:
            raise RuntimeError("select_mode() must be called before attach()")
        if self._dumb:
            self._stream.on("line", editor.feed_line)
        else:
            self._stream.set_raw_mode(True)
            self._raw_enabled = True
            self._stream.on("keypress", editor.feed_key)
        self._stream.on("end", editor.end)

    def restore(self) -> None:
        """Put the terminal back the way it was found."""
        if not self._raw_enabled:
            return
        self._raw_enabled = False
        self._stream.set_raw_mode(False)
