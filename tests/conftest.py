"""
Shared fixtures for the Lumo test suite.

Provides in-memory stand-ins for the execution engine and line editors so
individual test modules can focus on behavior rather than setup.
"""

from __future__ import annotations

from typing import Any, Callable

import pytest

from lumo.accumulator import InputAccumulator
from lumo.editor import EventEmitter
from lumo.session import SessionManager
from lumo.shutdown import ExitHandler


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeOutput:
    """Collects everything written to a session."""

    def __init__(self) -> None:
        self.chunks: list[str] = []
        self.closed = False

    def write(self, text: str) -> int:
        self.chunks.append(text)
        return len(text)

    def flush(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True

    @property
    def text(self) -> str:
        return "".join(self.chunks)


class FakeEditor(EventEmitter):
    """Line editor that records prompts and lets tests emit events."""

    def __init__(self) -> None:
        super().__init__()
        self.output = FakeOutput()
        self.prompts: list[str] = []
        self.rendered: list[tuple[str, int]] = []
        self.closed = False
        self.interrupted = 0

    @property
    def current_prompt(self) -> str:
        return self.prompts[-1] if self.prompts else ""

    def set_prompt(self, text: str) -> None:
        self.prompts.append(text)

    def prompt(self, indent: int = 0) -> None:
        self.rendered.append((self.current_prompt, indent))

    def close(self) -> None:
        self.closed = True
        self.output.close()

    def interrupt(self) -> None:
        self.interrupted += 1
        self.emit("SIGINT")


def balanced_parens(text: str) -> bool:
    return text.count("(") <= text.count(")")


class FakeEngine:
    """Execution engine whose readiness is paren balance by default."""

    def __init__(
        self,
        namespace: str = "user",
        ready: Callable[[str], bool] = balanced_parens,
        indent: int = 0,
    ) -> None:
        self.namespace = namespace
        self._ready = ready
        self._indent = indent
        self.readiness_checks: list[str] = []
        self.executed: list[tuple[str, int]] = []
        self.on_execute: Callable[[str, Any], None] | None = None

    def is_ready(self, text: str) -> bool:
        self.readiness_checks.append(text)
        return self._ready(text)

    def execute(self, text: str, session: Any) -> None:
        self.executed.append((text, session.id))
        if self.on_execute is not None:
            self.on_execute(text, session)

    def current_namespace(self) -> str:
        return self.namespace

    def continuation_indent(self, text: str) -> int:
        return self._indent


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture()
def manager() -> SessionManager:
    return SessionManager()


@pytest.fixture()
def exit_statuses() -> list[int]:
    return []


@pytest.fixture()
def exit_handler(manager: SessionManager, exit_statuses: list[int]) -> ExitHandler:
    return ExitHandler(manager, terminate=exit_statuses.append)


@pytest.fixture()
def accumulator(
    engine: FakeEngine,
    manager: SessionManager,
    exit_handler: ExitHandler,
) -> InputAccumulator:
    return InputAccumulator(engine, manager, exit_handler=exit_handler)
