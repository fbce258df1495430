"""
Message-quota tracking.

Two estimates are kept, each with its own cache:

- The estimate tier counts completed assistant turns across every
  project log, in a rolling five-hour window and in the current calendar
  month. Cheap enough to refresh every 30 seconds.
- The verified tier asks the agent CLI itself (via StatusProbe) for the
  percentages it shows on its usage screen. Expensive, so it is cached
  for four minutes and only one probe runs at a time; callers that
  arrive while a probe is in flight get the previous value.
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from .history_reader import (
    completed_assistant_message,
    iter_log_entries,
    list_log_files,
    parse_timestamp,
)
from .protocols import StatusProbeInterface
from .settings import TIMING
from .status_probe import USAGE_KEYSTROKES, VerifiedUsage, parse_usage_output

logger = logging.getLogger(__name__)

# Messages per five hours
PLAN_LIMITS: Dict[str, int] = {
    "pro": 45,
    "max100": 225,
    "max200": 900,
}

FIVE_HOURS = 5 * 60 * 60


def month_start(now: float) -> float:
    """Local midnight on the first day of the month containing `now`."""
    dt = datetime.fromtimestamp(now).replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return dt.timestamp()


@dataclass
class UsageSnapshot:
    """Completed-turn counts derived from the project logs."""
    five_hour_messages: int = 0
    five_hour_newest: Optional[float] = None
    monthly_messages: int = 0

    def to_dict(self) -> Dict[str, Any]:
        newest = None
        if self.five_hour_newest is not None:
            newest = datetime.fromtimestamp(self.five_hour_newest).isoformat()
        return {
            "five_hour": {"messages": self.five_hour_messages, "newest_timestamp": newest},
            "monthly": {"messages": self.monthly_messages},
        }


def calculate_usage(projects_path: Optional[Path] = None, now: Optional[float] = None) -> UsageSnapshot:
    """Scan every project log and count completed assistant turns.

    Files last modified before the start of the month are skipped
    without being read.
    """
    now = time.time() if now is None else now
    five_hours_ago = now - FIVE_HOURS
    since_month = month_start(now)
    totals = UsageSnapshot()

    for path in list_log_files(projects_path):
        try:
            if path.stat().st_mtime < since_month:
                continue
        except OSError:
            continue

        for entry in iter_log_entries(path):
            if completed_assistant_message(entry) is None:
                continue
            ts = parse_timestamp(entry.get("timestamp"))
            if ts is None:
                continue
            if ts >= since_month:
                totals.monthly_messages += 1
            if ts >= five_hours_ago:
                totals.five_hour_messages += 1
                if totals.five_hour_newest is None or ts > totals.five_hour_newest:
                    totals.five_hour_newest = ts

    return totals


class UsageTracker:
    """Cached usage estimates plus a single-flight verified probe."""

    def __init__(
        self,
        projects_path: Optional[Path] = None,
        probe: Optional[StatusProbeInterface] = None,
        clock: Callable[[], float] = time.time,
        estimate_ttl: float = TIMING.usage_estimate_ttl,
        verified_ttl: float = TIMING.usage_verified_ttl,
        probe_timeout: float = TIMING.usage_probe_timeout,
    ):
        self.projects_path = projects_path
        self.probe = probe
        self._clock = clock
        self.estimate_ttl = estimate_ttl
        self.verified_ttl = verified_ttl
        self.probe_timeout = probe_timeout

        self._estimate_lock = threading.Lock()
        self._estimate: Optional[UsageSnapshot] = None
        self._estimate_time = 0.0

        self._verified_lock = threading.Lock()
        self._verified: Optional[VerifiedUsage] = None
        self._verified_time = 0.0
        self._fetch_in_progress = False

    def get_usage(self) -> UsageSnapshot:
        """Log-derived estimate, recomputed at most once per TTL."""
        with self._estimate_lock:
            now = self._clock()
            if self._estimate is not None and now - self._estimate_time < self.estimate_ttl:
                return self._estimate
            self._estimate = calculate_usage(self.projects_path, now)
            self._estimate_time = now
            return self._estimate

    def get_accurate_usage(self) -> Optional[VerifiedUsage]:
        """Verified usage from the agent's own status screen.

        Returns:
            The cached value when fresh or when a probe is already
            running, the new value after a successful probe, otherwise
            the previous value (None if there never was one).
        """
        with self._verified_lock:
            now = self._clock()
            if self._verified is not None and now - self._verified_time < self.verified_ttl:
                return self._verified
            if self._fetch_in_progress or self.probe is None:
                return self._verified
            self._fetch_in_progress = True

        result = None
        try:
            result = self._fetch()
        finally:
            with self._verified_lock:
                if result is not None:
                    self._verified = result
                    self._verified_time = self._clock()
                self._fetch_in_progress = False
                cached = self._verified
        return cached

    def _fetch(self) -> Optional[VerifiedUsage]:
        try:
            text = self.probe.run(USAGE_KEYSTROKES, timeout=self.probe_timeout)
        except OSError as e:
            logger.warning(f"Usage probe failed: {e}")
            return None
        if text is None:
            logger.debug("Usage probe returned nothing")
            return None
        usage = parse_usage_output(text)
        if usage is None:
            logger.debug("Usage probe output did not contain usage figures")
        return usage
