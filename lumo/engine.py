"""
Execution engine — the interface the session core dispatches to, and the
Python adapter that ships with Lumo.

The core only needs four operations: decide whether accumulated text is a
complete unit, execute a unit against a session, report the current
namespace, and suggest an indent for continuation lines. ``PythonEngine``
answers the readiness question with ``codeop`` (the oracle behind the
stdlib ``code`` module) and evaluates units in named namespaces.
"""

from __future__ import annotations

import builtins
import codeop
import contextlib
import traceback
from typing import TYPE_CHECKING, Any, Protocol

import structlog

if TYPE_CHECKING:
    from lumo.session import Session

logger = structlog.get_logger(__name__)

_INDENT_WIDTH = 4


class ExecutionEngine(Protocol):
    """Capability interface consumed by the accumulator and prompt selector."""

    def is_ready(self, text: str) -> bool: ...

    def execute(self, text: str, session: "Session") -> None: ...

    def current_namespace(self) -> str: ...

    def continuation_indent(self, text: str) -> int: ...


class PythonEngine:
    """
    Evaluates Python source in named namespaces.

    Each namespace is its own globals dict. ``in_ns(name)`` is available in
    every namespace and switches the engine's current one, which is what the
    primary prompt displays.
    """

    def __init__(self, namespace: str = "user") -> None:
        self._namespaces: dict[str, dict[str, Any]] = {}
        self._current = namespace
        self._globals_for(namespace)

    # ------------------------------------------------------------------
    # Readiness oracle
    # ------------------------------------------------------------------

    def is_ready(self, text: str) -> bool:
        """Return False only while *text* can still become a valid unit.

        Input that can never compile counts as ready so that ``execute``
        reports the syntax error on the session's output.
        """
        # A block is only closed by an empty line, so the newline that ends
        # the latest line must not count as one.
        source = text[:-1] if text.endswith("\n") else text
        try:
            return codeop.compile_command(source, "<input>", "single") is not None
        except (SyntaxError, ValueError, OverflowError):
            return True

    def continuation_indent(self, text: str) -> int:
        lines = [line for line in text.splitlines() if line.strip()]
        if not lines:
            return 0
        last = lines[-1].expandtabs(_INDENT_WIDTH)
        indent = len(last) - len(last.lstrip(" "))
        if last.rstrip().endswith(":"):
            indent += _INDENT_WIDTH
        return indent

    # ------------------------------------------------------------------
    # Namespaces
    # ------------------------------------------------------------------

    def current_namespace(self) -> str:
        return self._current

    def in_ns(self, name: str) -> str:
        """Switch to namespace *name*, creating it on first use."""
        if not isinstance(name, str) or not name.strip() or any(c.isspace() for c in name):
            raise ValueError(f"invalid namespace name: {name!r}")
        self._globals_for(name)
        if name != self._current:
            logger.debug("engine.namespace_changed", previous=self._current, namespace=name)
        self._current = name
        return name

    def namespaces(self) -> list[str]:
        return sorted(self._namespaces)

    def _globals_for(self, name: str) -> dict[str, Any]:
        ns = self._namespaces.get(name)
        if ns is None:
            ns = {
                "__name__": name,
                "__builtins__": builtins,
                "in_ns": self.in_ns,
            }
            self._namespaces[name] = ns
        return ns

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(self, text: str, session: "Session") -> None:
        """Run one complete unit, writing all results and errors to *session*."""
        if not text.strip():
            return
        sink = session.output
        filename = f"<session-{session.id}>"
        try:
            code = compile(text, filename, "single")
        except (SyntaxError, ValueError, OverflowError) as e:
            sink.write("".join(traceback.format_exception_only(type(e), e)))
            sink.flush()
            return

        ns = self._globals_for(self._current)
        with contextlib.redirect_stdout(sink), contextlib.redirect_stderr(sink):
            try:
                exec(code, ns)
            except SystemExit:
                sink.write("Use exit or quit to leave the shell.\n")
            except Exception as e:
                self._write_traceback(sink, e)
        sink.flush()

    @staticmethod
    def _write_traceback(sink: Any, exc: BaseException) -> None:
        # Drop our own exec() frame so the traceback starts at user code.
        tb = exc.__traceback__.tb_next if exc.__traceback__ is not None else None
        lines = traceback.format_exception(type(exc), exc, tb)
        sink.write("".join(lines))
