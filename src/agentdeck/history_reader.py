"""
Read Claude Code's per-project conversation logs.

Claude Code stores data in:
- ~/.claude/projects/{encoded-path}/{sessionId}.jsonl - full conversation with token usage

Each completed assistant message carries usage data and a stop reason:
{
  "timestamp": "2025-01-01T12:00:00.000Z",
  "message": {
    "role": "assistant",
    "stop_reason": "end_turn",
    "usage": {
      "input_tokens": 1003,
      "cache_creation_input_tokens": 2884,
      "cache_read_input_tokens": 25944,
      "output_tokens": 278
    }
  }
}

Lines that fail to parse or lack these fields are skipped.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from .settings import get_claude_projects_dir

# Model name → context window size in tokens.
MODEL_CONTEXT_WINDOWS: Dict[str, int] = {
    "claude-opus-4-6": 200_000,
    "claude-sonnet-4-5-20250929": 200_000,
    "claude-haiku-4-5-20251001": 200_000,
    "claude-3-5-sonnet-20241022": 200_000,
    "claude-3-5-haiku-20241022": 200_000,
}
DEFAULT_CONTEXT_WINDOW = 200_000


def model_context_window(model: Optional[str]) -> int:
    """Return the context window size for a given model name."""
    if not model:
        return DEFAULT_CONTEXT_WINDOW
    return MODEL_CONTEXT_WINDOWS.get(model, DEFAULT_CONTEXT_WINDOW)


def encode_project_path(path: str) -> str:
    """Encode a project path to Claude Code's directory naming format.

    /home/user/myproject -> -home-user-myproject
    """
    return str(path).replace("/", "-")


def get_project_dir(cwd: str, projects_path: Optional[Path] = None) -> Path:
    projects_path = projects_path or get_claude_projects_dir()
    return projects_path / encode_project_path(cwd)


def list_log_files(projects_path: Optional[Path] = None) -> List[Path]:
    """All *.jsonl files one level below the projects directory."""
    projects_path = projects_path or get_claude_projects_dir()
    files: List[Path] = []
    try:
        project_dirs = [p for p in projects_path.iterdir() if p.is_dir()]
    except OSError:
        return []
    for project_dir in project_dirs:
        try:
            files.extend(p for p in project_dir.iterdir() if p.suffix == ".jsonl")
        except OSError:
            continue
    return files


def get_active_log_file(cwd: str, projects_path: Optional[Path] = None) -> Optional[Path]:
    """The most recently modified conversation log for a directory."""
    project_dir = get_project_dir(cwd, projects_path)
    newest: Optional[Path] = None
    newest_mtime = -1.0
    try:
        candidates = list(project_dir.glob("*.jsonl"))
    except OSError:
        return None
    for path in candidates:
        try:
            mtime = path.stat().st_mtime
        except OSError:
            continue
        if mtime > newest_mtime:
            newest, newest_mtime = path, mtime
    return newest


def iter_log_entries(path: Path) -> Iterator[Dict[str, Any]]:
    """Yield each JSON object in a log file, skipping malformed lines."""
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if isinstance(entry, dict):
                    yield entry
    except OSError:
        return


def completed_assistant_message(entry: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Return the message of a finished assistant turn, else None.

    A turn counts when the role is assistant, a usage record is present
    and a stop reason marks it complete.
    """
    msg = entry.get("message")
    if not isinstance(msg, dict):
        return None
    if msg.get("role") != "assistant":
        return None
    if not isinstance(msg.get("usage"), dict):
        return None
    if not msg.get("stop_reason"):
        return None
    return msg


def parse_timestamp(value: Any) -> Optional[float]:
    """Parse an ISO timestamp into epoch seconds (naive values are UTC)."""
    if not isinstance(value, str) or not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def context_tokens(usage: Dict[str, Any]) -> int:
    """Tokens occupying the context window for one turn."""
    total = 0
    for key in ("input_tokens", "cache_read_input_tokens", "cache_creation_input_tokens"):
        value = usage.get(key) or 0
        if isinstance(value, (int, float)):
            total += int(value)
    return total


def last_context_usage(path: Path) -> Optional[Dict[str, Any]]:
    """Context size and model of the last completed turn in a log.

    Returns:
        {"tokens": int, "model": Optional[str]} or None when the log has
        no completed assistant turn.
    """
    last: Optional[Dict[str, Any]] = None
    for entry in iter_log_entries(path):
        msg = completed_assistant_message(entry)
        if msg is None:
            continue
        last = {"tokens": context_tokens(msg["usage"]), "model": msg.get("model")}
    return last
