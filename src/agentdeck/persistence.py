"""
Optional on-disk snapshot of session metadata.

Only enabled when `persistence.enabled` is set in the config (or the
server is started with --persist). Saves are debounced so a burst of
mutations produces one write; the file is replaced atomically. Process
state is never stored, only the fields needed to list sessions again.
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import List, Optional

from .protocols import SchedulerInterface
from .scheduler import ScheduledTask, SerializedScheduler, ThreadScheduler
from .settings import TIMING, get_sessions_path

logger = logging.getLogger(__name__)

PERSISTED_FIELDS = (
    "id",
    "name",
    "cwd",
    "summary",
    "original_prompt",
    "archived",
    "created_at",
    "last_activity",
)


class SessionStore:
    """Debounced JSON store for session records."""

    def __init__(
        self,
        path: Optional[Path] = None,
        scheduler: Optional[SchedulerInterface] = None,
        debounce: float = TIMING.save_debounce,
    ):
        self.path = path or get_sessions_path()
        self.debounce = debounce
        self._lock = threading.RLock()
        self._pending: Optional[List[dict]] = None
        self._task = ScheduledTask(
            SerializedScheduler(scheduler or ThreadScheduler(), self._lock),
            self._write_pending,
        )

    def load(self) -> List[dict]:
        """Saved records, or [] if the file is missing or unreadable."""
        if not self.path.exists():
            return []
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not load sessions from {self.path}: {e}")
            return []
        if not isinstance(data, list):
            return []
        return [r for r in data if isinstance(r, dict) and r.get("id")]

    def save(self, records: List[dict]) -> None:
        """Schedule a write of `records`, superseding any pending one."""
        with self._lock:
            self._pending = [
                {key: record.get(key) for key in PERSISTED_FIELDS} for record in records
            ]
            self._task.schedule(self.debounce)

    def flush(self) -> None:
        """Write any pending records now."""
        with self._lock:
            self._task.cancel()
            self._write_pending()

    def _write_pending(self) -> None:
        records, self._pending = self._pending, None
        if records is None:
            return
        tmp = self.path.with_suffix(".json.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w") as f:
                json.dump(records, f, indent=2)
            os.replace(tmp, self.path)
        except OSError as e:
            logger.warning(f"Could not save sessions to {self.path}: {e}")


class NullStore:
    """Store used when persistence is disabled."""

    def load(self) -> List[dict]:
        return []

    def save(self, records: List[dict]) -> None:
        pass

    def flush(self) -> None:
        pass
