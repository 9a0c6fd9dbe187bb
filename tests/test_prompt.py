"""Tests for lumo/prompt.py — primary and continuation prompts."""

from __future__ import annotations

from lumo.prompt import (
    CONTINUATION_MARKER,
    PromptSelector,
    primary_prompt,
    secondary_prompt,
)

from tests.conftest import FakeEngine


class TestPromptStrings:
    def test_primary(self) -> None:
        assert primary_prompt("user") == "user=> "

    def test_secondary_for_user(self) -> None:
        assert secondary_prompt("user") == "  #_=> "

    def test_secondary_for_dotted_namespace(self) -> None:
        assert secondary_prompt("cljs.user") == "       #_=> "

    def test_secondary_aligns_with_primary(self) -> None:
        for ns in ("a", "user", "my.long.namespace"):
            assert len(secondary_prompt(ns)) == max(len(primary_prompt(ns)), len(CONTINUATION_MARKER))
            assert secondary_prompt(ns).endswith(CONTINUATION_MARKER)

    def test_short_namespace_never_negative_pad(self) -> None:
        assert secondary_prompt("") == CONTINUATION_MARKER
        assert secondary_prompt("a") == CONTINUATION_MARKER


class TestPromptSelector:
    def test_reads_namespace_fresh(self) -> None:
        engine = FakeEngine(namespace="user")
        selector = PromptSelector(engine)
        assert selector.primary() == "user=> "
        engine.namespace = "my.app"
        assert selector.primary() == "my.app=> "
        assert selector.secondary() == "    #_=> "

    def test_select_empty_buffer_is_primary(self) -> None:
        engine = FakeEngine()
        assert PromptSelector(engine).select("") == "user=> "
        assert engine.readiness_checks == []

    def test_select_partial_buffer_is_secondary(self) -> None:
        selector = PromptSelector(FakeEngine())
        assert selector.select("(+ 1 2\n") == "  #_=> "

    def test_select_complete_buffer_is_primary(self) -> None:
        selector = PromptSelector(FakeEngine())
        assert selector.select("(+ 1 2)\n") == "user=> "
