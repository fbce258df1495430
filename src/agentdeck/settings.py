"""
Paths and fixed tuning values for Agentdeck.

Directory layout:
    ~/.agentdeck/                 (AGENTDECK_DIR)
        config.yaml
        agentdeck.log
    ~/.config/agentdeck/          (per-OS config dir, %APPDATA%\\agentdeck on Windows)
        sessions.json             (only when persistence is enabled)
    ~/.claude/projects/           (AGENTDECK_CLAUDE_DIR) - read-only agent logs

All timing values are seconds.
"""

import os
import sys
from dataclasses import dataclass
from pathlib import Path


def get_agentdeck_dir() -> Path:
    """Base directory for config and logs (AGENTDECK_DIR overrides)."""
    env_dir = os.environ.get("AGENTDECK_DIR")
    if env_dir:
        return Path(env_dir)
    return Path.home() / ".agentdeck"


def get_config_path() -> Path:
    return get_agentdeck_dir() / "config.yaml"


def get_log_path() -> Path:
    return get_agentdeck_dir() / "agentdeck.log"


def get_state_dir() -> Path:
    """Per-OS configuration directory used for the session snapshot.

    AGENTDECK_STATE_DIR overrides, which keeps tests away from the
    user's real snapshot.
    """
    env_dir = os.environ.get("AGENTDECK_STATE_DIR")
    if env_dir:
        return Path(env_dir)
    if sys.platform == "win32":
        base = os.environ.get("APPDATA")
        return Path(base) / "agentdeck" if base else Path.home() / "agentdeck"
    return Path.home() / ".config" / "agentdeck"


def get_sessions_path() -> Path:
    return get_state_dir() / "sessions.json"


def get_claude_projects_dir() -> Path:
    """Directory holding Claude Code's per-project JSONL logs."""
    env_dir = os.environ.get("AGENTDECK_CLAUDE_DIR")
    if env_dir:
        return Path(env_dir) / "projects"
    return Path.home() / ".claude" / "projects"


@dataclass(frozen=True)
class TimingSettings:
    """Timers used by the session core."""

    tick_interval: float = 1.0
    burst_window: float = 0.5
    working_debounce: float = 0.15
    idle_silence: float = 2.0
    resize_cooldown: float = 0.5
    settle_delay: float = 0.1  # best-effort, not a readiness signal
    save_debounce: float = 0.5
    usage_estimate_ttl: float = 30.0
    usage_verified_ttl: float = 240.0
    usage_probe_timeout: float = 15.0
    context_estimate_ttl: float = 10.0
    context_probe_timeout: float = 10.0
    summarizer_timeout: float = 15.0
    usage_publish_interval: float = 180.0
    context_publish_interval: float = 10.0


@dataclass(frozen=True)
class LimitSettings:
    """Size limits used by the session core."""

    buffer_cap: int = 1024 * 1024
    buffer_keep: int = 512 * 1024
    rolling_window_chars: int = 2000
    working_threshold: int = 20
    debounce_threshold: int = 5
    summary_threshold: int = 100
    default_cols: int = 120
    default_rows: int = 30
    viewer_queue_size: int = 1000


TIMING = TimingSettings()
LIMITS = LimitSettings()
