"""
Cancellable scheduled tasks.

Every deferred action in the session core (working debounce, resize
cooldown, debounced saves, the agent auto-start) goes through
ScheduledTask: scheduling again supersedes the previous run, cancel()
drops it, and `pending` tells whether it is still due.
"""

import threading
from typing import Any, Callable, Optional

from .protocols import SchedulerInterface, TimerHandle


class _ThreadTimerHandle:
    def __init__(self, timer: threading.Timer):
        self._timer = timer

    def cancel(self) -> None:
        self._timer.cancel()


class ThreadScheduler:
    """Production scheduler backed by daemon threading.Timer objects."""

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return _ThreadTimerHandle(timer)


class SerializedScheduler:
    """Scheduler wrapper that runs every callback while holding a lock.

    Session timers are created through one of these so that timer
    callbacks are serialized with the session's other mutations.
    """

    def __init__(self, inner: SchedulerInterface, lock: Any):
        self._inner = inner
        self._lock = lock

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        def run() -> None:
            with self._lock:
                callback()

        return self._inner.call_later(delay, run)


class ScheduledTask:
    """A single deferred callback slot.

    At most one run is pending at a time; schedule() replaces whatever
    was pending.
    """

    def __init__(self, scheduler: SchedulerInterface, callback: Callable[[], Any]):
        self._scheduler = scheduler
        self._callback = callback
        self._handle: Optional[TimerHandle] = None
        self._generation = 0

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self, delay: float) -> None:
        self.cancel()
        self._generation += 1
        generation = self._generation
        self._handle = self._scheduler.call_later(delay, lambda: self._fire(generation))

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self, generation: int) -> None:
        # A superseded timer may still fire if cancel() raced with it
        if generation != self._generation or self._handle is None:
            return
        self._handle = None
        self._callback()
