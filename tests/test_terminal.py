"""Tests for lumo/terminal.py — mode selection and key delivery."""

from __future__ import annotations

import io
from unittest.mock import patch

import pytest
from prompt_toolkit.input import create_pipe_input
from prompt_toolkit.key_binding import KeyPress

from lumo.editor import TerminalLineEditor
from lumo.terminal import (
    SystemPlatform,
    TerminalController,
    TerminalInput,
    TerminalUnavailableError,
)


class FakePlatform:
    def __init__(self, raw: bool) -> None:
        self.raw = raw
        self.checked = 0

    def supports_raw_mode(self, stream) -> bool:
        self.checked += 1
        return self.raw


@pytest.fixture()
def terminal_input():
    stream = TerminalInput(io.StringIO())
    with patch.object(TerminalInput, "set_raw_mode", autospec=True) as set_raw:
        yield stream, set_raw


@pytest.fixture()
def raw_session():
    """A raw-mode controller fed through a pipe, with submitted lines collected."""
    with create_pipe_input() as keys:
        stream = TerminalInput(io.StringIO(), keys=keys)
        controller = TerminalController(stream, platform=FakePlatform(raw=True))
        controller.select_mode(dumb_terminal=False)
        editor = _editor()
        lines: list[str] = []
        editor.on("line", lines.append)
        controller.attach(editor)
        yield keys, stream, lines
        controller.restore()


def _editor() -> TerminalLineEditor:
    return TerminalLineEditor(io.StringIO(), terminal=True)


# =============================================================================
# Mode selection
# =============================================================================


class TestSelectMode:
    @pytest.mark.parametrize("flag", [False, True])
    def test_no_raw_support_forces_dumb(self, terminal_input, flag: bool) -> None:
        stream, set_raw = terminal_input
        controller = TerminalController(stream, platform=FakePlatform(raw=False))
        assert controller.select_mode(dumb_terminal=flag) is True
        controller.attach(_editor())
        set_raw.assert_not_called()

    def test_raw_support_and_flag_off_enables_raw_once(self, terminal_input) -> None:
        stream, set_raw = terminal_input
        controller = TerminalController(stream, platform=FakePlatform(raw=True))
        assert controller.select_mode(dumb_terminal=False) is False
        controller.attach(_editor())
        set_raw.assert_called_once_with(stream, True)

    def test_flag_on_never_enables_raw(self, terminal_input) -> None:
        stream, set_raw = terminal_input
        controller = TerminalController(stream, platform=FakePlatform(raw=True))
        assert controller.select_mode(dumb_terminal=True) is True
        controller.attach(_editor())
        set_raw.assert_not_called()
        assert controller.dumb is True

    def test_attach_before_select_is_an_error(self, terminal_input) -> None:
        stream, _ = terminal_input
        controller = TerminalController(stream, platform=FakePlatform(raw=True))
        with pytest.raises(RuntimeError):
            controller.attach(_editor())

    def test_restore_only_after_raw(self, terminal_input) -> None:
        stream, set_raw = terminal_input
        controller = TerminalController(stream, platform=FakePlatform(raw=True))
        controller.select_mode(dumb_terminal=False)
        controller.attach(_editor())
        controller.restore()
        controller.restore()
        assert [c.args for c in set_raw.call_args_list] == [(stream, True), (stream, False)]

    def test_restore_in_dumb_mode_is_noop(self, terminal_input) -> None:
        stream, set_raw = terminal_input
        controller = TerminalController(stream, platform=FakePlatform(raw=False))
        controller.select_mode(dumb_terminal=False)
        controller.attach(_editor())
        controller.restore()
        set_raw.assert_not_called()


class TestRouting:
    def test_dumb_mode_routes_lines(self, terminal_input) -> None:
        stream, _ = terminal_input
        controller = TerminalController(stream, platform=FakePlatform(raw=False))
        controller.select_mode(dumb_terminal=False)
        editor = TerminalLineEditor(io.StringIO(), terminal=False)
        lines: list[str] = []
        editor.on("line", lines.append)
        controller.attach(editor)

        stream.emit("line", "(+ 1 2)\n")
        assert lines == ["(+ 1 2)"]

    def test_raw_mode_routes_keys(self, raw_session) -> None:
        keys, stream, lines = raw_session
        keys.send_bytes(b"1+1\r")
        stream.read_available()
        assert lines == ["1+1"]

    def test_end_of_input_closes_editor(self, terminal_input) -> None:
        stream, _ = terminal_input
        controller = TerminalController(stream, platform=FakePlatform(raw=False))
        controller.select_mode(dumb_terminal=False)
        editor = TerminalLineEditor(io.StringIO(), terminal=False)
        closes: list[bool] = []
        editor.on("close", lambda: closes.append(True))
        controller.attach(editor)

        stream.emit("end")
        stream.emit("end")
        assert closes == [True]


class TestKeyDelivery:
    def test_escape_sequence_split_across_reads(self, raw_session) -> None:
        keys, stream, lines = raw_session
        for chunk in (b"abc", b"\x1b", b"[D", b"\r"):
            keys.send_bytes(chunk)
            stream.read_available()
        assert lines == ["abc"]

    def test_cursor_moves_on_split_sequence(self, raw_session) -> None:
        keys, stream, lines = raw_session
        for chunk in (b"ac", b"\x1b[", b"D", b"b\r"):
            keys.send_bytes(chunk)
            stream.read_available()
        assert lines == ["abc"]

    def test_crlf_split_across_reads_is_one_line(self, raw_session) -> None:
        keys, stream, lines = raw_session
        keys.send_bytes(b"x\r")
        stream.read_available()
        keys.send_bytes(b"\n")
        stream.read_available()
        assert lines == ["x"]

    def test_lone_newline_submits(self, raw_session) -> None:
        keys, stream, lines = raw_session
        keys.send_bytes(b"y\n")
        stream.read_available()
        assert lines == ["y"]

    def test_split_utf8(self, raw_session) -> None:
        keys, stream, _ = raw_session
        pressed: list[KeyPress] = []
        stream.on("keypress", pressed.append)
        encoded = "é".encode("utf-8")
        keys.send_bytes(encoded[:1])
        stream.read_available()
        assert pressed == []
        keys.send_bytes(encoded[1:])
        stream.read_available()
        assert [p.key for p in pressed] == ["é"]

    def test_closed_input_ends_session(self, raw_session) -> None:
        keys, stream, _ = raw_session
        ends: list[bool] = []
        stream.on("end", lambda: ends.append(True))
        keys.close()
        stream.read_available()
        assert ends == [True]


# =============================================================================
# Input stream
# =============================================================================


class TestTerminalInput:
    def test_closed_stream_is_unavailable(self) -> None:
        stream = io.StringIO()
        stream.close()
        with pytest.raises(TerminalUnavailableError):
            TerminalInput(stream)

    def test_stringio_is_not_a_tty(self) -> None:
        assert TerminalInput(io.StringIO()).isatty() is False

    def test_fileno_without_descriptor(self) -> None:
        with pytest.raises(TerminalUnavailableError):
            TerminalInput(io.StringIO()).fileno()

    def test_raw_mode_without_descriptor(self) -> None:
        with pytest.raises(TerminalUnavailableError):
            TerminalInput(io.StringIO()).set_raw_mode(True)

    def test_raw_mode_toggles(self) -> None:
        with create_pipe_input() as keys:
            stream = TerminalInput(io.StringIO(), keys=keys)
            stream.set_raw_mode(True)
            assert stream.is_raw
            stream.set_raw_mode(False)
            assert not stream.is_raw

    def test_system_platform_rejects_non_tty(self) -> None:
        assert SystemPlatform().supports_raw_mode(TerminalInput(io.StringIO())) is False

    def test_system_platform_rejects_windows(self) -> None:
        class TTY(io.StringIO):
            def isatty(self) -> bool:
                return True

        assert SystemPlatform("win32").supports_raw_mode(TerminalInput(TTY())) is False
