"""
Unit tests for status_patterns.
"""

import pytest

from agentdeck.status_patterns import (
    DEFAULT_RULE_TABLE,
    IDLE,
    WAITING,
    PatternRule,
    RuleTable,
    clean_prompt,
    is_redraw,
    strip_ansi,
    strip_terminal_responses,
    visible_length,
)


class TestStripAnsi:
    """Escape sequence removal."""

    def test_removes_colors(self):
        assert strip_ansi("\x1b[31mred\x1b[0m") == "red"

    def test_removes_osc_title(self):
        assert strip_ansi("\x1b]0;my title\x07after") == "after"

    def test_removes_private_modes_and_charset(self):
        assert strip_ansi("\x1b[?25l\x1b(Bx\x1b[?25h") == "x"

    def test_keeps_plain_text(self):
        assert strip_ansi("plain text") == "plain text"


class TestVisibleLength:
    def test_ignores_escapes_and_controls(self):
        assert visible_length("\x1b[1mab\x1b[0m\r\n") == 2

    def test_counts_unicode_characters(self):
        assert visible_length("héllo ✓") == 7


class TestIsRedraw:
    """Pure repaint detection."""

    @pytest.mark.parametrize("chunk", [
        "\x1b[2K\x1b[1G",
        "\x1b[1A\x1b[2K   ",
        "\x1b[K\r",
    ])
    def test_repaint_sequences(self, chunk):
        assert is_redraw(chunk)

    def test_visible_text_is_not_redraw(self):
        assert not is_redraw("\x1b[2K\x1b[1GCompiling...")

    def test_plain_whitespace_is_not_redraw(self):
        assert not is_redraw("   ")


class TestTerminalResponses:
    def test_strips_cursor_position_report(self):
        assert strip_terminal_responses("\x1b[24;80Rhi") == "hi"

    def test_strips_osc_color_report(self):
        assert strip_terminal_responses("\x1b]11;rgb:0000/0000/0000\x1b\\") == ""

    def test_keeps_typed_text(self):
        assert strip_terminal_responses("hello") == "hello"


class TestCleanPrompt:
    """Turning raw keystrokes into the intended prompt."""

    def test_applies_backspace(self):
        assert clean_prompt("fix teh\x7f\x7fhe bug") == "fix the bug"

    def test_strips_escapes_and_controls(self):
        assert clean_prompt("\x1b[200~fix the bug\x1b[201~\r") == "fix the bug"

    def test_trims_whitespace(self):
        assert clean_prompt("   hello  ") == "hello"

    def test_only_controls_is_empty(self):
        assert clean_prompt("\x1b[A\x1b[B\x03") == ""


class TestRuleTable:
    """Ordered waiting/idle rules."""

    @pytest.mark.parametrize("text", [
        "Shall I continue?",
        "Apply changes (y/n)",
        "Overwrite? [Y/n]",
        "Are you sure [yes/no]",
        "Press ENTER to continue",
        "Do you want to proceed? ",
        "Please confirm the action",
        "❯ 1. Yes\n  2. No\nEnter to select · Esc to cancel",
    ])
    def test_waiting_texts(self, text):
        assert DEFAULT_RULE_TABLE.is_waiting(text)

    @pytest.mark.parametrize("text", ["user@host:~$ ", "> ", "claude> "])
    def test_idle_texts(self, text):
        assert DEFAULT_RULE_TABLE.is_idle(text)

    def test_plain_output_matches_nothing(self):
        text = "Reading 3 files"
        assert not DEFAULT_RULE_TABLE.is_waiting(text)
        assert not DEFAULT_RULE_TABLE.is_idle(text)

    def test_priority_order(self):
        table = RuleTable([
            PatternRule(WAITING, r"b", 20),
            PatternRule(WAITING, r"a", 10),
        ])
        assert table.first_match(WAITING, "ab").pattern == "a"

    def test_rules_for_filters_kind(self):
        kinds = {r.kind for r in DEFAULT_RULE_TABLE.rules_for(IDLE)}
        assert kinds == {IDLE}
