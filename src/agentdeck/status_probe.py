"""
Verified-status probe.

Starts the agent CLI in a throwaway pseudo-terminal, types a scripted
keystroke sequence (for example /status and tabbing to the usage page),
and returns what ended up on screen. The raw output is replayed through a
pyte screen so cursor movement and redraws resolve to the text a person
would see, which is what the parsers below match against.

Everything here degrades to None: a missing CLI, a timeout, or output
that doesn't match the expected wording is a failed probe, never an
exception for the caller.
"""

import logging
import os
import pty
import re
import select
import signal
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

import pyte

from .pty_session import set_winsize
from .status_patterns import strip_ansi

logger = logging.getLogger(__name__)

PROBE_COLS = 120
PROBE_ROWS = 40
STARTUP_WAIT = 3.0

# /status, Down to pick it from the autocomplete, Enter, then Tab twice
# (Status -> Config -> Usage).
USAGE_KEYSTROKES: Tuple[Tuple[bytes, float], ...] = (
    (b"/status", 0.5),
    (b"\x1b[B", 0.2),
    (b"\r", 2.0),
    (b"\t", 0.8),
    (b"\t", 1.5),
)

CONTEXT_KEYSTROKES: Tuple[Tuple[bytes, float], ...] = (
    (b"/context", 0.5),
    (b"\r", 2.5),
)

PERCENT_USED = re.compile(r"(\d+)%\s*used")
SESSION_RESET = re.compile(r"Current session.*?Resets?\s+([^\n\[]+)", re.DOTALL)
WEEK_RESET = re.compile(r"Current week \(all models\).*?Resets?\s+([^\n\[]+)", re.DOTALL)
CLOCK_TIME = re.compile(r"([\d:]+\s?[ap]m)", re.IGNORECASE)
DATE_TIME = re.compile(r"([A-Za-z]+ \d+,?\s*\d*,?\s*[\d:]+[ap]m)", re.IGNORECASE)
CONTEXT_USAGE = re.compile(
    r"([\d.,]+)\s*(k|m)?\s*/\s*([\d.,]+)\s*(k|m)?\s*tokens\s*\((\d+(?:\.\d+)?)%\)",
    re.IGNORECASE,
)

# Separates the rendered final screen from the raw stream in probe output
PAGE_BREAK = "\f"


@dataclass(frozen=True)
class VerifiedUsage:
    """Usage figures read from the agent's own status screen."""
    session_percent: int
    session_resets: Optional[str] = None
    week_percent: Optional[int] = None
    week_resets: Optional[str] = None
    week_sonnet_percent: Optional[int] = None
    fetched_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "session": {"percent": self.session_percent, "reset_time": self.session_resets},
            "week_all": {"percent": self.week_percent, "reset_time": self.week_resets},
            "week_sonnet": {"percent": self.week_sonnet_percent},
            "fetched_at": self.fetched_at.isoformat(),
            "source": "claude-status",
        }


def _reset_text(match: Optional[re.Match], pattern: re.Pattern) -> Optional[str]:
    if match is None:
        return None
    text = strip_ansi(match.group(1)).strip()
    short = pattern.match(text)
    if short:
        return " ".join(short.group(1).split())
    return text.split("(")[0].strip() or None


def _sections(text: str) -> List[str]:
    """Rendered screen first, then the raw stream when there is one."""
    screen, found, raw = text.partition(PAGE_BREAK)
    return [screen, raw] if found else [text]


def parse_usage_output(text: str) -> Optional[VerifiedUsage]:
    """Parse the usage page of the status screen.

    The first three "N% used" figures are, in order: current session,
    current week (all models), current week (Sonnet). Figures are taken
    from one section only: the rendered screen, or the raw stream when the
    screen has none.

    Returns:
        VerifiedUsage, or None when no percentage is present
    """
    if not text:
        return None
    for section in _sections(text):
        percents = [int(m.group(1)) for m in PERCENT_USED.finditer(section)]
        if not percents:
            continue
        return VerifiedUsage(
            session_percent=percents[0],
            week_percent=percents[1] if len(percents) > 1 else None,
            week_sonnet_percent=percents[2] if len(percents) > 2 else None,
            session_resets=_reset_text(SESSION_RESET.search(section), CLOCK_TIME),
            week_resets=_reset_text(WEEK_RESET.search(section), DATE_TIME),
        )
    return None


def _scaled(number: str, suffix: Optional[str]) -> int:
    value = float(number.replace(",", ""))
    if suffix:
        value *= 1_000 if suffix.lower() == "k" else 1_000_000
    return int(round(value))


def parse_context_output(text: str) -> Optional[Tuple[int, int, int]]:
    """Parse a "45.2k/200k tokens (23%)" line from the context screen.

    Returns:
        (tokens, limit, percent), or None when no such line is present
    """
    if not text:
        return None
    match = None
    for section in _sections(text):
        match = CONTEXT_USAGE.search(section)
        if match is not None:
            break
    if match is None:
        return None
    tokens = _scaled(match.group(1), match.group(2))
    limit = _scaled(match.group(3), match.group(4))
    percent = int(round(float(match.group(5))))
    return tokens, limit, percent


def render_screen(raw: bytes, cols: int = PROBE_COLS, rows: int = PROBE_ROWS) -> str:
    """Replay raw terminal output and return the final screen as text."""
    screen = pyte.Screen(cols, rows)
    stream = pyte.ByteStream(screen)
    stream.feed(raw)
    return "\n".join(line.rstrip() for line in screen.display)


class StatusProbe:
    """Runs the agent CLI in a scratch PTY to read its status screens."""

    def __init__(self, command: Optional[List[str]] = None, cols: int = PROBE_COLS, rows: int = PROBE_ROWS):
        self.command = command or ["claude"]
        self.cols = cols
        self.rows = rows

    def run(
        self,
        keystrokes: Sequence[Tuple[bytes, float]],
        cwd: Optional[str] = None,
        timeout: float = 15.0,
    ) -> Optional[str]:
        deadline = time.monotonic() + timeout
        env = dict(os.environ)
        env["TERM"] = "xterm-256color"
        env["COLUMNS"] = str(self.cols)
        env["LINES"] = str(self.rows)

        try:
            pid, fd = pty.fork()
        except OSError as e:
            logger.warning(f"Status probe could not open a PTY: {e}")
            return None

        if pid == 0:
            try:
                if cwd:
                    os.chdir(cwd)
                os.execvpe(self.command[0], self.command, env)
            except OSError:
                os._exit(127)

        output = bytearray()
        try:
            try:
                set_winsize(fd, self.cols, self.rows)
            except OSError:
                pass
            output += _read_for(fd, min(STARTUP_WAIT, _remaining(deadline)))
            for keys, wait in keystrokes:
                if _remaining(deadline) <= 0:
                    logger.debug("Status probe timed out")
                    return None
                os.write(fd, keys)
                output += _read_for(fd, min(wait, _remaining(deadline)))
        except OSError as e:
            logger.debug(f"Status probe failed: {e}")
            return None
        finally:
            _kill(pid, fd)

        if not output:
            return None
        screen = render_screen(bytes(output), self.cols, self.rows)
        # The screen holds the last page; the raw stream still has earlier pages
        return screen + PAGE_BREAK + strip_ansi(output.decode("utf-8", errors="replace"))


def _remaining(deadline: float) -> float:
    return max(0.0, deadline - time.monotonic())


def _read_for(fd: int, seconds: float) -> bytes:
    data = bytearray()
    end = time.monotonic() + seconds
    while True:
        left = end - time.monotonic()
        if left <= 0:
            break
        ready, _, _ = select.select([fd], [], [], min(0.1, left))
        if not ready:
            continue
        try:
            chunk = os.read(fd, 8192)
        except OSError:
            break
        if not chunk:
            break
        data += chunk
    return bytes(data)


def _kill(pid: int, fd: int) -> None:
    try:
        os.kill(pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    try:
        os.waitpid(pid, 0)
    except ChildProcessError:
        pass
    try:
        os.close(fd)
    except OSError:
        pass
