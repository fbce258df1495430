"""
Centralized status detection patterns.

This module holds the text handling used by StatusDetector and the
session manager:
- stripping escape sequences before length and pattern checks
- recognizing pure terminal redraws
- filtering terminal query responses out of user input
- the ordered rule table for waiting/idle detection

Rules are plain data so precedence is visible in one place and each rule
can be tested on its own.
"""

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

# CSI sequences (colors, cursor movement, private modes like ?25h)
CSI_PATTERN = re.compile(r"\x1b\[[0-9;?<>=!]*[ -/]*[@-~]")
# OSC sequences terminated by BEL or ST
OSC_PATTERN = re.compile(r"\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)")
# Charset selection and other two/three byte escapes
SHORT_ESCAPE_PATTERN = re.compile(r"\x1bO[A-Za-z]|\x1b[()*+][0-9A-Za-z]|\x1b[=>78DEHMNZc]")
CONTROL_PATTERN = re.compile(r"[\x00-\x1f\x7f]")

# Cursor-up, erase-line and cursor-to-column are what spinners and
# status lines use to repaint in place.
REDRAW_PATTERN = re.compile(r"\x1b\[\d*[AGK]|\x1b\[2K")

# Replies the terminal sends back to the application when queried:
# cursor position reports, device attributes, OSC color reports, focus
# in/out. These arrive on the input path but are not typing.
TERMINAL_RESPONSE_PATTERN = re.compile(
    r"\x1b\[\d+;\d+R"
    r"|\x1b\[[?>][0-9;]*c"
    r"|\x1b\][0-9]+;rgb:[0-9a-fA-F/]+(?:\x07|\x1b\\)"
    r"|\x1b\[[IO]"
)

ESCAPE_PATTERNS = (OSC_PATTERN, CSI_PATTERN, SHORT_ESCAPE_PATTERN)

WAITING = "waiting"
IDLE = "idle"


def strip_ansi(text: str) -> str:
    """Remove escape sequences, keeping all other characters."""
    for pattern in ESCAPE_PATTERNS:
        text = pattern.sub("", text)
    return text


def visible_length(text: str) -> int:
    """Length of text once escape sequences and control chars are removed."""
    return len(CONTROL_PATTERN.sub("", strip_ansi(text)))


def is_redraw(text: str) -> bool:
    """Check if an output chunk only repaints what is already on screen.

    A chunk qualifies when it carries at least one in-place repaint
    sequence and nothing visible besides whitespace.
    """
    if not REDRAW_PATTERN.search(text):
        return False
    return not CONTROL_PATTERN.sub("", strip_ansi(text)).strip()


def strip_terminal_responses(text: str) -> str:
    """Remove terminal query replies from an input chunk."""
    return TERMINAL_RESPONSE_PATTERN.sub("", text)


def clean_prompt(text: str) -> str:
    """Turn raw typed input into the prompt the user meant.

    Escape sequences are dropped, backspace/delete edit the preceding
    character, remaining control characters are removed.

    Args:
        text: Raw input bytes decoded as text

    Returns:
        Cleaned, whitespace-trimmed prompt
    """
    text = strip_ansi(text)
    chars: List[str] = []
    for ch in text:
        if ch in ("\x7f", "\x08"):
            if chars:
                chars.pop()
        elif ch == "\t" or not CONTROL_PATTERN.match(ch):
            chars.append(ch)
    return "".join(chars).strip()


@dataclass(frozen=True)
class PatternRule:
    """One classification rule.

    Lower priority numbers are evaluated first within a kind.
    """

    kind: str
    pattern: str
    priority: int
    flags: int = re.IGNORECASE

    def matches(self, text: str) -> bool:
        return re.search(self.pattern, text, self.flags) is not None


DEFAULT_RULES: Tuple[PatternRule, ...] = (
    PatternRule(WAITING, r"\?\s*$", 10),
    PatternRule(WAITING, r"\(y/n\)", 20),
    PatternRule(WAITING, r"\[y/n\]", 21),
    PatternRule(WAITING, r"\[yes/no\]", 22),
    PatternRule(WAITING, r"\(yes/no\)", 23),
    PatternRule(WAITING, r"press enter", 30),
    PatternRule(WAITING, r"continue\?", 31),
    PatternRule(WAITING, r"proceed\?", 32),
    PatternRule(WAITING, r"confirm", 33),
    # Claude Code's interactive question UI
    PatternRule(WAITING, r"enter to select.*esc to cancel", 40),
    PatternRule(WAITING, r"☐", 41, 0),
    PatternRule(IDLE, r">\s*$", 10),
    PatternRule(IDLE, r"\$\s*$", 11),
    PatternRule(IDLE, r"claude>\s*$", 12),
)


class RuleTable:
    """Ordered rule evaluation over DEFAULT_RULES (or a custom set)."""

    def __init__(self, rules: Optional[Iterable[PatternRule]] = None):
        self.rules = tuple(
            sorted(rules if rules is not None else DEFAULT_RULES, key=lambda r: r.priority)
        )

    def rules_for(self, kind: str) -> Tuple[PatternRule, ...]:
        return tuple(r for r in self.rules if r.kind == kind)

    def first_match(self, kind: str, text: str) -> Optional[PatternRule]:
        """Return the highest-precedence rule of a kind matching text."""
        for rule in self.rules_for(kind):
            if rule.matches(text):
                return rule
        return None

    def is_waiting(self, text: str) -> bool:
        return self.first_match(WAITING, text) is not None

    def is_idle(self, text: str) -> bool:
        return self.first_match(IDLE, text) is not None


DEFAULT_RULE_TABLE = RuleTable()
