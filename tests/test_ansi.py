"""Tests for ANSI stripping and keystroke replay."""

from reshell.transcript.ansi import (
    clean_input,
    strip_ansi,
    strip_ansi_for_transcript,
    visible_lines,
)


class TestStripAnsi:
    def test_plain_text_unchanged(self):
        assert strip_ansi("hello world") == "hello world"

    def test_color_codes(self):
        assert strip_ansi("\x1b[31mred\x1b[0m text") == "red text"

    def test_private_mode_codes(self):
        assert strip_ansi("\x1b[?25lhidden\x1b[?25h") == "hidden"

    def test_osc_title(self):
        assert strip_ansi("\x1b]0;my title\x07prompt$") == "prompt$"

    def test_osc_with_string_terminator(self):
        assert strip_ansi("\x1b]8;;http://x\x1b\\link") == "link"

    def test_carriage_returns_removed(self):
        assert strip_ansi("line\r\n") == "line\n"

    def test_cursor_forward_deleted(self):
        assert strip_ansi("a\x1b[1Cb") == "ab"


class TestStripAnsiForTranscript:
    def test_cursor_forward_becomes_space(self):
        assert strip_ansi_for_transcript("Hello\x1b[1Cworld") == "Hello world"

    def test_cursor_forward_count_ignored(self):
        assert strip_ansi_for_transcript("a\x1b[5Cb") == "a b"

    def test_other_codes_still_removed(self):
        assert strip_ansi_for_transcript("\x1b[1mbold\x1b[22m\x1b[2Cx") == "bold x"


class TestCleanInput:
    def test_plain(self):
        assert clean_input("ls -la") == "ls -la"

    def test_backspace_edits(self):
        assert clean_input("helo\x7flo") == "hello"

    def test_ctrl_h_backspace(self):
        assert clean_input("ab\x08c") == "ac"

    def test_backspace_on_empty(self):
        assert clean_input("\x7f\x7fok") == "ok"

    def test_arrow_keys_dropped(self):
        assert clean_input("a\x1b[Ab\x1bOBc") == "abc"

    def test_focus_events_dropped(self):
        assert clean_input("\x1b[I\x1b[Otext") == "text"

    def test_function_key_tilde(self):
        assert clean_input("x\x1b[3~y") == "xy"

    def test_control_chars_dropped(self):
        assert clean_input("a\x01b\tc") == "abc"


class TestVisibleLines:
    def test_most_recent_first(self):
        assert visible_lines(["one\r\ntwo\r\nthree"], 2) == ["three", "two"]

    def test_trailing_blank_lines_ignored(self):
        assert visible_lines(["a\r\nb\r\n\r\n"], 1) == ["b"]

    def test_carriage_return_overwrites(self):
        assert visible_lines(["loading 10%\rloading 100%"], 1) == ["loading 100%"]

    def test_joins_chunks(self):
        assert visible_lines(["❯ ", "\x1b[2m", "ready"], 1) == ["❯ ready"]

    def test_empty(self):
        assert visible_lines([], 4) == []
