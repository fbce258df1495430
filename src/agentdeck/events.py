"""
Events published by the session core.

Each event is a small frozen dataclass with a `type` tag; the boundary
layer (web server, tests) subscribes to an EventBus and receives every
event in publish order on its own queue.
"""

import queue
import threading
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Union


@dataclass(frozen=True)
class SessionsChanged:
    """Lifecycle change: the session list or a session record changed."""
    sessions: List[Dict[str, Any]]
    type: str = field(default="sessions", init=False)


@dataclass(frozen=True)
class OutputEvent:
    session_id: str
    data: bytes
    type: str = field(default="output", init=False)


@dataclass(frozen=True)
class StatusEvent:
    session_id: str
    status: str
    type: str = field(default="status", init=False)


@dataclass(frozen=True)
class SummaryEvent:
    session_id: str
    summary: str
    original_prompt: str
    type: str = field(default="summary", init=False)


@dataclass(frozen=True)
class ErrorEvent:
    session_id: str
    message: str
    type: str = field(default="error", init=False)


@dataclass(frozen=True)
class UsageEvent:
    usage: Dict[str, Any]
    source: str  # "estimate" or "verified"
    plan_limits: Dict[str, int] = field(default_factory=dict)
    type: str = field(default="usage", init=False)


@dataclass(frozen=True)
class ContextEvent:
    session_id: str
    percent: int
    display: str
    accurate: bool = False
    type: str = field(default="context", init=False)


Event = Union[
    SessionsChanged,
    OutputEvent,
    StatusEvent,
    SummaryEvent,
    ErrorEvent,
    UsageEvent,
    ContextEvent,
]


def event_to_dict(event: Event) -> Dict[str, Any]:
    """JSON-friendly form of an event (output bytes decoded as UTF-8)."""
    data = asdict(event)
    if isinstance(event, OutputEvent):
        data["data"] = event.data.decode("utf-8", errors="replace")
    return data


class Subscription:
    """A subscriber's view of the bus."""

    def __init__(self, bus: "EventBus", maxsize: int = 0):
        self._bus = bus
        self.queue: "queue.Queue[Event]" = queue.Queue(maxsize=maxsize)

    def get(self, timeout: Optional[float] = None) -> Optional[Event]:
        try:
            return self.queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[Event]:
        """Return every queued event without blocking."""
        events = []
        while True:
            try:
                events.append(self.queue.get_nowait())
            except queue.Empty:
                return events

    def close(self) -> None:
        self._bus.unsubscribe(self)


class EventBus:
    """Fan-out of events to subscriber queues."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: List[Subscription] = []

    def subscribe(self, maxsize: int = 0) -> Subscription:
        sub = Subscription(self, maxsize=maxsize)
        with self._lock:
            self._subscribers.append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subscribers:
                self._subscribers.remove(sub)

    def publish(self, event: Event) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for sub in subscribers:
            try:
                sub.queue.put_nowait(event)
            except queue.Full:
                # A stalled viewer loses events rather than blocking sessions
                pass
