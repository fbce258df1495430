"""
Context-window fullness per working directory.

The cheap estimate is the token total of the last completed assistant
turn in the directory's active conversation log. A verified reading from
the agent's /context screen is taken only when the estimate climbs into
a threshold bucket it wasn't in before, so the number of probes stays
bounded no matter how much output a session produces.
"""

import logging
import threading
import time
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Callable, Dict, Optional, Set

from .history_reader import get_active_log_file, last_context_usage, model_context_window
from .protocols import StatusProbeInterface
from .settings import TIMING
from .status_probe import CONTEXT_KEYSTROKES, parse_context_output

logger = logging.getLogger(__name__)

CONTEXT_LIMIT = 200_000
THRESHOLDS = (0, 20, 40, 60, 80, 95)


def threshold_bucket(percent: float) -> int:
    """Highest threshold at or below `percent`."""
    bucket = THRESHOLDS[0]
    for threshold in THRESHOLDS:
        if percent >= threshold:
            bucket = threshold
    return bucket


@dataclass(frozen=True)
class ContextEstimate:
    tokens: int
    percent: int
    display: str
    accurate: bool = False
    last_threshold_bucket: int = 0
    limit: int = CONTEXT_LIMIT

    def to_dict(self) -> dict:
        return asdict(self)


def estimate_from_tokens(tokens: int, limit: int = CONTEXT_LIMIT) -> ContextEstimate:
    percent = int(round(tokens / limit * 100)) if limit else 0
    return ContextEstimate(
        tokens=tokens,
        percent=percent,
        display=f"{percent}%",
        last_threshold_bucket=threshold_bucket(percent),
        limit=limit,
    )


class ContextTracker:
    """Per-cwd context estimates with threshold-gated verification.

    Args:
        projects_path: Claude projects directory (default from settings)
        probe: Status probe used for verified readings; None disables them
        clock: Monotonic clock for the cache TTL
        background: Run verified probes on a daemon thread. When False
            the probe runs inside get_context(), which tests rely on.
        on_update: Called with (cwd, estimate) when a verified reading lands
    """

    def __init__(
        self,
        projects_path: Optional[Path] = None,
        probe: Optional[StatusProbeInterface] = None,
        clock: Callable[[], float] = time.monotonic,
        ttl: float = TIMING.context_estimate_ttl,
        probe_timeout: float = TIMING.context_probe_timeout,
        background: bool = True,
        on_update: Optional[Callable[[str, ContextEstimate], None]] = None,
    ):
        self.projects_path = projects_path
        self.probe = probe
        self._clock = clock
        self.ttl = ttl
        self.probe_timeout = probe_timeout
        self.background = background
        self.on_update = on_update

        self._lock = threading.Lock()
        self._cache: Dict[str, ContextEstimate] = {}
        self._cache_time: Dict[str, float] = {}
        self._buckets: Dict[str, int] = {}
        self._in_flight: Set[str] = set()

    def get_context(self, cwd: str) -> Optional[ContextEstimate]:
        """Current estimate for a directory, or None when nothing is logged."""
        if not cwd:
            return None

        with self._lock:
            cached = self._cache.get(cwd)
            if cached is not None and self._clock() - self._cache_time[cwd] < self.ttl:
                return cached

        log_file = get_active_log_file(cwd, self.projects_path)
        usage = last_context_usage(log_file) if log_file is not None else None
        if usage is None:
            return cached

        estimate = estimate_from_tokens(usage["tokens"], model_context_window(usage.get("model")))
        with self._lock:
            previous_bucket = self._buckets.get(cwd, THRESHOLDS[0])
            self._buckets[cwd] = estimate.last_threshold_bucket
            self._cache[cwd] = estimate
            self._cache_time[cwd] = self._clock()
        crossed = estimate.last_threshold_bucket > previous_bucket

        if crossed and self.probe is not None:
            if self.background:
                threading.Thread(
                    target=self.verify, args=(cwd,), name="ContextProbe", daemon=True
                ).start()
            else:
                verified = self.verify(cwd)
                if verified is not None:
                    return verified
        return estimate

    def verify(self, cwd: str) -> Optional[ContextEstimate]:
        """Take a verified reading for `cwd`, deduplicated per directory.

        Returns:
            The verified estimate, or None when a probe for this
            directory is already running or the probe failed.
        """
        if self.probe is None:
            return None
        with self._lock:
            if cwd in self._in_flight:
                return None
            self._in_flight.add(cwd)

        try:
            parsed = self._fetch(cwd)
        finally:
            with self._lock:
                self._in_flight.discard(cwd)

        if parsed is None:
            return None

        tokens, limit, percent = parsed
        estimate = replace(
            estimate_from_tokens(tokens, limit or CONTEXT_LIMIT),
            percent=percent,
            display=f"{percent}%",
            accurate=True,
        )
        with self._lock:
            self._cache[cwd] = estimate
            self._cache_time[cwd] = self._clock()
        if self.on_update is not None:
            self.on_update(cwd, estimate)
        return estimate

    def invalidate(self, cwd: str) -> None:
        """Drop the cached estimate for a directory."""
        with self._lock:
            self._cache.pop(cwd, None)
            self._cache_time.pop(cwd, None)

    def _fetch(self, cwd: str):
        try:
            text = self.probe.run(CONTEXT_KEYSTROKES, cwd=cwd, timeout=self.probe_timeout)
        except OSError as e:
            logger.warning(f"Context probe failed for {cwd}: {e}")
            return None
        if text is None:
            logger.debug(f"Context probe returned nothing for {cwd}")
            return None
        parsed = parse_context_output(text)
        if parsed is None:
            logger.debug(f"Context probe output for {cwd} had no token figures")
        return parsed
