"""Prompt selection — primary and continuation prompts for a session."""

from __future__ import annotations

from lumo.engine import ExecutionEngine

PROMPT_SUFFIX = "=> "
CONTINUATION_MARKER = "#_=> "


def primary_prompt(namespace: str) -> str:
    return f"{namespace}{PROMPT_SUFFIX}"


def secondary_prompt(namespace: str) -> str:
    """Continuation marker right-aligned under the primary prompt."""
    pad = max(0, len(primary_prompt(namespace)) - len(CONTINUATION_MARKER))
    return " " * pad + CONTINUATION_MARKER


class PromptSelector:
    """Computes prompts from the engine's namespace at the time of asking."""

    def __init__(self, engine: ExecutionEngine) -> None:
        self._engine = engine

    def primary(self) -> str:
        return primary_prompt(self._engine.current_namespace())

    def secondary(self) -> str:
        return secondary_prompt(self._engine.current_namespace())

    def select(self, buffer: str) -> str:
        """Prompt for a session whose accumulated input is *buffer*."""
        if not buffer or self._engine.is_ready(buffer):
            return self.primary()
        return self.secondary()
