"""
Line editors — one per session.

An editor is the session's view of its transport: it renders prompts,
delivers ``"line"``, ``"SIGINT"`` and ``"close"`` events, and owns the
output sink the engine writes results to.

Two implementations share the same surface:

- ``StreamLineEditor``: newline-delimited text over an asyncio stream pair
  (socket sessions).
- ``TerminalLineEditor``: the local terminal, either keypress-driven with
  in-line editing over a prompt_toolkit ``Buffer``, or line-buffered (dumb
  terminal).

Events are emitted synchronously on the event loop thread; a handler runs
to completion before the next event for any session is delivered.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, Callable, Optional, Protocol, TextIO

import structlog
from prompt_toolkit.buffer import Buffer
from prompt_toolkit.document import Document
from prompt_toolkit.history import History, InMemoryHistory
from prompt_toolkit.key_binding import KeyPress
from prompt_toolkit.keys import Keys

logger = structlog.get_logger(__name__)

EventHandler = Callable[..., Any]

_TAB = "    "


class OutputSink(Protocol):
    def write(self, text: str) -> int: ...

    def flush(self) -> None: ...

    def close(self) -> None: ...


class LineEditor(Protocol):
    """Capability interface the session core depends on."""

    output: OutputSink

    def set_prompt(self, text: str) -> None: ...

    def prompt(self, indent: int = 0) -> None: ...

    def on(self, event: str, handler: EventHandler) -> None: ...

    def close(self) -> None: ...


class EventEmitter:
    """Synchronous, ordered event dispatch keyed by event name."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)

    def on(self, event: str, handler: EventHandler) -> None:
        self._handlers[event].append(handler)

    def emit(self, event: str, *args: Any) -> int:
        """Call every handler for *event* in registration order.

        Returns the number of handlers invoked.
        """
        handlers = list(self._handlers.get(event, ()))
        for handler in handlers:
            handler(*args)
        return len(handlers)

    def listener_count(self, event: str) -> int:
        return len(self._handlers.get(event, ()))


# ---------------------------------------------------------------------------
# Output sinks
# ---------------------------------------------------------------------------


class StreamOutput:
    """Text sink over an asyncio StreamWriter (UTF-8 encoded)."""

    def __init__(self, writer: asyncio.StreamWriter) -> None:
        self._writer = writer

    def write(self, text: str) -> int:
        if self._writer.is_closing():
            return 0
        self._writer.write(text.encode("utf-8"))
        return len(text)

    def flush(self) -> None:
        # The transport buffers and sends on its own.
        pass

    def close(self) -> None:
        if not self._writer.is_closing():
            self._writer.close()

    @property
    def closed(self) -> bool:
        return self._writer.is_closing()


class ConsoleOutput:
    """Text sink over the process's own terminal. Never closes the stream."""

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream

    def write(self, text: str) -> int:
        written = self._stream.write(text)
        self._stream.flush()
        return written

    def flush(self) -> None:
        self._stream.flush()

    def close(self) -> None:
        self.flush()


# ---------------------------------------------------------------------------
# Socket sessions
# ---------------------------------------------------------------------------


class StreamLineEditor(EventEmitter):
    """Line editor for one socket connection."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        super().__init__()
        self._reader = reader
        self._writer = writer
        self.output = StreamOutput(writer)
        self._prompt = ""
        self._close_emitted = False

    @property
    def peer(self) -> Optional[str]:
        peername = self._writer.get_extra_info("peername")
        if isinstance(peername, (tuple, list)) and len(peername) >= 2:
            return f"{peername[0]}:{peername[1]}"
        return str(peername) if peername else None

    def set_prompt(self, text: str) -> None:
        self._prompt = text

    def prompt(self, indent: int = 0) -> None:
        # Remote clients type their own indentation.
        self.output.write(self._prompt)

    def close(self) -> None:
        self.output.close()

    async def run(self) -> None:
        """Deliver inbound lines until the peer disconnects or the session closes.

        Always ends with exactly one ``"close"`` event.
        """
        try:
            while not self.output.closed:
                raw = await self._reader.readline()
                if not raw:
                    break
                self.emit("line", raw.decode("utf-8", errors="replace").rstrip("\r\n"))
        except ValueError:
            # StreamReader raises ValueError when a line exceeds its buffer limit.
            logger.warning("stream_editor.line_too_long", peer=self.peer)
            self.output.write("Error: line too long\n")
        except (asyncio.IncompleteReadError, ConnectionResetError, BrokenPipeError) as e:
            logger.info("stream_editor.connection_lost", peer=self.peer, error=str(e))
        finally:
            self._emit_close()

    def _emit_close(self) -> None:
        if self._close_emitted:
            return
        self._close_emitted = True
        self.emit("close")


# ---------------------------------------------------------------------------
# Local terminal
# ---------------------------------------------------------------------------


class TerminalLineEditor(EventEmitter):
    """
    Line editor for the local terminal.

    With ``terminal=True`` the editor receives prompt_toolkit ``KeyPress``
    objects through ``feed_key`` and edits a prompt_toolkit ``Buffer``,
    which also provides history navigation. With ``terminal=False`` (dumb
    terminal) the OS line discipline does the editing and whole lines
    arrive through ``feed_line``.
    """

    def __init__(
        self,
        stream: TextIO,
        *,
        terminal: bool,
        history: Optional[History] = None,
    ) -> None:
        super().__init__()
        self.output = ConsoleOutput(stream)
        self.terminal = terminal
        self.buffer = Buffer(
            history=history if history is not None else InMemoryHistory(),
            multiline=False,
        )
        self._prompt = ""
        self._last_key: Any = None
        self._close_emitted = False
        self._closed = False

    @property
    def line(self) -> str:
        """The partially typed line (keypress mode only)."""
        return self.buffer.text

    @property
    def history(self) -> History:
        return self.buffer.history

    def set_prompt(self, text: str) -> None:
        self._prompt = text

    def prompt(self, indent: int = 0) -> None:
        if self._closed:
            return
        if self.terminal:
            self.buffer.reset(Document(" " * max(0, indent)))
            self._load_history()
            self._redraw()
        else:
            self.output.write(self._prompt)

    def close(self) -> None:
        self._closed = True
        self.output.flush()

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    def feed_line(self, line: str) -> None:
        """Accept a complete line from a line-buffered stream."""
        if self._closed:
            return
        text = line.rstrip("\r\n")
        self._remember(text)
        self.emit("line", text)

    def feed_key(self, key_press: KeyPress) -> None:
        """Apply one keypress from the terminal's key parser."""
        if self._closed:
            return
        key = key_press.key
        previous, self._last_key = self._last_key, key
        if key == Keys.ControlJ and previous == Keys.ControlM:
            # CR LF from one Enter press.
            return
        handler = self._KEY_HANDLERS.get(key)
        if handler is not None:
            handler(self)
        elif isinstance(key, str) and not isinstance(key, Keys) and key.isprintable():
            self._insert(key_press.data or key)

    def interrupt(self) -> None:
        """Ctrl+C: discard the current line and notify listeners."""
        if self._closed:
            return
        self.output.write("^C\n" if self.terminal else "\n")
        self.buffer.reset()
        self.emit("SIGINT")

    def end(self) -> None:
        """End of input (Ctrl+D on an empty line, or EOF)."""
        if self._close_emitted:
            return
        self._close_emitted = True
        self.output.write("\n")
        self.emit("close")

    # ------------------------------------------------------------------
    # Keypress editing
    # ------------------------------------------------------------------

    def _load_history(self) -> None:
        # Buffer loads its history as a task on the running loop.
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        self.buffer.load_history_if_not_yet_loaded()

    def _remember(self, text: str) -> None:
        self.buffer.text = text
        self.buffer.reset(append_to_history=bool(text.strip()))

    def _insert(self, text: str) -> None:
        self.buffer.insert_text(text)
        self._redraw()

    def _submit(self) -> None:
        text = self.buffer.text
        self.output.write("\n")
        self._remember(text)
        self.emit("line", text)

    def _backspace(self) -> None:
        if self.buffer.delete_before_cursor():
            self._redraw()

    def _delete(self) -> None:
        if self.buffer.delete():
            self._redraw()

    def _eof_or_delete(self) -> None:
        if self.buffer.text:
            self._delete()
        else:
            self.end()

    def _move(self, position: int) -> None:
        self.buffer.cursor_position = max(0, min(len(self.buffer.text), position))
        self._redraw()

    def _history_previous(self) -> None:
        self.buffer.history_backward()
        self._redraw()

    def _history_next(self) -> None:
        self.buffer.history_forward()
        self._redraw()

    def _kill_line(self) -> None:
        self.buffer.delete_before_cursor(self.buffer.cursor_position)
        self._redraw()

    def _redraw(self) -> None:
        text = self.buffer.text
        out = f"\r{self._prompt}{text}\x1b[K"
        back = len(text) - self.buffer.cursor_position
        if back:
            out += f"\x1b[{back}D"
        self.output.write(out)

    _KEY_HANDLERS: dict[Keys, Callable[["TerminalLineEditor"], None]] = {
        Keys.Enter: _submit,
        Keys.ControlJ: _submit,
        Keys.Backspace: _backspace,
        Keys.Delete: _delete,
        Keys.Tab: lambda self: self._insert(_TAB),
        Keys.Left: lambda self: self._move(self.buffer.cursor_position - 1),
        Keys.Right: lambda self: self._move(self.buffer.cursor_position + 1),
        Keys.Home: lambda self: self._move(0),
        Keys.End: lambda self: self._move(len(self.buffer.text)),
        Keys.Up: _history_previous,
        Keys.Down: _history_next,
        Keys.ControlA: lambda self: self._move(0),
        Keys.ControlE: lambda self: self._move(len(self.buffer.text)),
        Keys.ControlU: _kill_line,
        Keys.ControlC: interrupt,
        Keys.ControlD: _eof_or_delete,
    }
