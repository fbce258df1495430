"""
Protocol definitions for external dependencies.

These interfaces allow dependency injection for testing, so the session
manager and trackers can run against fake terminals, summarizers, probes
and clocks instead of real processes.
"""

from typing import Any, Callable, List, Optional, Protocol, Sequence, Tuple, runtime_checkable


@runtime_checkable
class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


@runtime_checkable
class SchedulerInterface(Protocol):
    """Runs a callback once after a delay (seconds)."""

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        ...


@runtime_checkable
class PtyInterface(Protocol):
    """Interface for one pseudo-terminal process."""

    on_data: Optional[Callable[[bytes], None]]
    on_exit: Optional[Callable[[int], None]]

    def spawn(self) -> None:
        """Start the process. Raises OSError if it cannot be started."""
        ...

    def write(self, data: bytes) -> None:
        ...

    def resize(self, cols: int, rows: int) -> None:
        ...

    def kill(self) -> None:
        """Terminate the process. Safe to call more than once."""
        ...

    def get_buffer(self) -> bytes:
        """Replay buffer, prefixed with terminal reset sequences."""
        ...

    @property
    def is_running(self) -> bool:
        ...


# cwd, cols, rows -> PtyInterface
PtyFactory = Callable[[str, int, int], PtyInterface]


@runtime_checkable
class SummarizerInterface(Protocol):
    def summarize(self, prompt: str) -> str:
        """Return a short summary; never raises, falls back to truncation."""
        ...


@runtime_checkable
class StatusProbeInterface(Protocol):
    """Drives the agent CLI with scripted keystrokes and returns screen text."""

    def run(
        self,
        keystrokes: Sequence[Tuple[bytes, float]],
        cwd: Optional[str] = None,
        timeout: float = 15.0,
    ) -> Optional[str]:
        """Run the probe.

        Args:
            keystrokes: (bytes to type, seconds to wait afterwards) pairs
            cwd: Working directory for the agent process
            timeout: Outer ceiling; the process is killed when exceeded

        Returns:
            Captured screen text, or None on failure
        """
        ...


@runtime_checkable
class SessionStoreInterface(Protocol):
    def load(self) -> List[dict]:
        ...

    def save(self, records: List[dict]) -> None:
        ...

    def flush(self) -> None:
        ...
