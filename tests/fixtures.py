"""
Test fixtures and factories for agentdeck unit tests.

Fake collaborators (PTY, summarizer, status probe) that record what the
code under test did, plus helpers for writing Claude-style JSONL logs.
"""

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from agentdeck.history_reader import encode_project_path
from agentdeck.pty_session import RESET_PREFIX


class FakePty:
    """In-memory stand-in for PtySession."""

    def __init__(self, cwd: str, cols: int = 120, rows: int = 30, fail: Optional[Exception] = None):
        self.cwd = cwd
        self.cols = cols
        self.rows = rows
        self.fail = fail
        self.on_data: Optional[Callable[[bytes], None]] = None
        self.on_exit: Optional[Callable[[int], None]] = None
        self.written: List[bytes] = []
        self.resizes: List[Tuple[int, int]] = []
        self.spawned = False
        self.kill_count = 0
        self.buffer = b""

    def spawn(self) -> None:
        if self.fail is not None:
            raise self.fail
        self.spawned = True

    def write(self, data: bytes) -> None:
        self.written.append(data)

    def resize(self, cols: int, rows: int) -> None:
        self.resizes.append((cols, rows))

    def kill(self) -> None:
        self.kill_count += 1
        self.spawned = False

    def get_buffer(self) -> bytes:
        return RESET_PREFIX + self.buffer

    @property
    def is_running(self) -> bool:
        return self.spawned

    # Test helpers

    def emit(self, data) -> None:
        if isinstance(data, str):
            data = data.encode("utf-8")
        self.buffer += data
        self.on_data(data)

    def exit(self, code: int = 0) -> None:
        self.spawned = False
        self.on_exit(code)


class FakePtyFactory:
    """Records every FakePty it hands out."""

    def __init__(self, fail: Optional[Exception] = None):
        self.fail = fail
        self.created: List[FakePty] = []

    def __call__(self, cwd: str, cols: int, rows: int) -> FakePty:
        pty = FakePty(cwd, cols, rows, fail=self.fail)
        self.created.append(pty)
        return pty

    @property
    def last(self) -> FakePty:
        return self.created[-1]


class FakeSummarizer:
    def __init__(self, result: str = "short summary"):
        self.result = result
        self.calls: List[str] = []

    def summarize(self, prompt: str) -> str:
        self.calls.append(prompt)
        return self.result


class FakeProbe:
    """Status probe returning canned screen text.

    With `block=True`, run() waits on `release` so tests can hold a probe
    in flight.
    """

    def __init__(self, output: Optional[str] = None, block: bool = False):
        self.output = output
        self.calls: List[Tuple[Sequence[Tuple[bytes, float]], Optional[str]]] = []
        self.block = block
        self.started = threading.Event()
        self.release = threading.Event()

    def run(self, keystrokes, cwd=None, timeout=15.0):
        self.calls.append((keystrokes, cwd))
        self.started.set()
        if self.block:
            self.release.wait(timeout=5.0)
        return self.output


USAGE_SCREEN = """\
 Status   Config   Usage

 Current session
 ██████████▌                                        21% used
 Resets 4:59pm (Europe/London)

 Current week (all models)
 ███▌                                               7% used
 Resets Jan 17, 2026, 10:59am (Europe/London)

 Current week (Sonnet only)
 █                                                  2% used
"""

CONTEXT_SCREEN = """\
 Context Usage
 ⛁ ⛁ ⛀ ⛶ ⛶   claude-opus-4-6 · 45.2k/200k tokens (23%)
"""


def iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def assistant_entry(ts: float, input_tokens: int = 100, cache_read: int = 0,
                    cache_creation: int = 0, stop_reason: Optional[str] = "end_turn",
                    model: str = "claude-opus-4-6") -> dict:
    return {
        "type": "assistant",
        "timestamp": iso(ts),
        "message": {
            "role": "assistant",
            "model": model,
            "stop_reason": stop_reason,
            "usage": {
                "input_tokens": input_tokens,
                "cache_read_input_tokens": cache_read,
                "cache_creation_input_tokens": cache_creation,
                "output_tokens": 10,
            },
        },
    }


def user_entry(ts: float, text: str = "hello") -> dict:
    return {
        "type": "user",
        "timestamp": iso(ts),
        "message": {"role": "user", "content": text},
    }


def write_log(projects_path: Path, cwd: str, entries: list, name: str = "session.jsonl",
              extra_lines: Sequence[str] = ()) -> Path:
    """Write a JSONL conversation log for `cwd` under `projects_path`."""
    project_dir = projects_path / encode_project_path(cwd)
    project_dir.mkdir(parents=True, exist_ok=True)
    path = project_dir / name
    lines = [json.dumps(e) for e in entries] + list(extra_lines)
    path.write_text("\n".join(lines) + "\n")
    return path
