"""
Background publisher for usage and context figures.

TrackerMonitor runs one daemon thread that periodically asks the
UsageTracker and ContextTracker for fresh numbers and publishes them on
the event bus. Log scanning and probes happen here, off the threads that
handle session I/O.
"""

import logging
import threading
import time
from typing import Callable, Dict, Optional, Set

from .context_tracker import ContextEstimate, ContextTracker
from .events import ContextEvent, EventBus, UsageEvent
from .session_manager import SessionManager
from .settings import TIMING
from .usage_tracker import PLAN_LIMITS, UsageTracker

logger = logging.getLogger(__name__)


class TrackerMonitor:
    """
    Periodic usage/context publisher.

    - Call .start() to spin up the daemon thread.
    - Call .stop() to ask it to shut down cleanly.
    """

    def __init__(
        self,
        manager: SessionManager,
        bus: EventBus,
        usage_tracker: UsageTracker,
        context_tracker: ContextTracker,
        usage_interval: float = TIMING.usage_publish_interval,
        context_interval: float = TIMING.context_publish_interval,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.manager = manager
        self.bus = bus
        self.usage_tracker = usage_tracker
        self.context_tracker = context_tracker
        self.usage_interval = usage_interval
        self.context_interval = context_interval
        self._clock = clock

        self.latest_usage: Optional[UsageEvent] = None
        self._sent_context: Dict[str, ContextEstimate] = {}
        self._watched_cwds: Set[str] = set()
        self._context_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._lock = threading.Lock()  # protect start/stop

        context_tracker.on_update = self._on_verified_context

    def start(self) -> None:
        """Start the background thread (idempotent)."""
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run, name="TrackerMonitorThread", daemon=True
            )
            self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Request the thread to stop and optionally wait for it."""
        with self._lock:
            if self._thread is None:
                return
            self._stop_event.set()
            self._thread.join(timeout=timeout)
            self._thread = None

    def publish_usage(self) -> None:
        """Publish the log estimate, then the verified figures if any."""
        estimate = self.usage_tracker.get_usage()
        event = UsageEvent(estimate.to_dict(), "estimate", dict(PLAN_LIMITS))
        self.latest_usage = event
        self.bus.publish(event)

        verified = self.usage_tracker.get_accurate_usage()
        if verified is not None:
            event = UsageEvent(verified.to_dict(), "verified", dict(PLAN_LIMITS))
            self.latest_usage = event
            self.bus.publish(event)

    def publish_context(self) -> None:
        """Publish a context event for each live session whose figure changed."""
        watched: Set[str] = set()
        shown: Set[str] = set()
        for record in self.manager.get_all_sessions():
            if record["archived"]:
                continue
            watched.add(record["cwd"])
            shown.add(record["id"])
            estimate = self.context_tracker.get_context(record["cwd"])
            if estimate is not None:
                self._publish_context(record["id"], estimate)
        self._forget_unwatched(watched, shown)

    def _forget_unwatched(self, watched: Set[str], shown: Set[str]) -> None:
        """Drop figures for directories and sessions that left the live set."""
        with self._context_lock:
            stale_cwds = self._watched_cwds - watched
            self._watched_cwds = watched
            for session_id in set(self._sent_context) - shown:
                del self._sent_context[session_id]
        for cwd in stale_cwds:
            self.context_tracker.invalidate(cwd)

    def _publish_context(self, session_id: str, estimate: ContextEstimate) -> None:
        with self._context_lock:
            if self._sent_context.get(session_id) == estimate:
                return
            self._sent_context[session_id] = estimate
        self.bus.publish(
            ContextEvent(session_id, estimate.percent, estimate.display, estimate.accurate)
        )

    def _on_verified_context(self, cwd: str, estimate: ContextEstimate) -> None:
        for record in self.manager.get_all_sessions():
            if record["cwd"] == cwd and not record["archived"]:
                self._publish_context(record["id"], estimate)

    def _run(self) -> None:
        next_usage = 0.0
        next_context = 0.0
        while not self._stop_event.is_set():
            now = self._clock()
            if now >= next_usage:
                self._safely(self.publish_usage)
                next_usage = now + self.usage_interval
            if now >= next_context:
                self._safely(self.publish_context)
                next_context = now + self.context_interval
            self._stop_event.wait(min(1.0, self.context_interval))

    @staticmethod
    def _safely(fn: Callable[[], None]) -> None:
        # One bad scan must not end the thread
        try:
            fn()
        except (OSError, ValueError) as e:
            logger.warning(f"Tracker update failed: {e}")
