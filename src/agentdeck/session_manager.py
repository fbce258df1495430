"""
Session lifecycle and routing.

SessionManager owns every Session: its record fields, its PtySession
(at most one live process) and its StatusDetector (one per session, kept
across respawns). Viewers talk to the manager through session ids only
and receive everything back as events on the EventBus.

Threading: each Session carries an RLock. Every mutation of a session,
whether from a public method, the PTY reader thread, the ticker thread
or a detector timer, happens while holding that lock. Output is
published before the detector sees it, under the same lock, so a status
event never overtakes the output that caused it. Writes to the PTY are
the exception: they can block on a full terminal queue, so send_input
releases the session lock first and orders writers with a separate
per-session write lock. The manager-level lock
guards only the id -> Session map and is never held while taking a
session lock.
"""

import logging
import os
import re
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Union

from .events import (
    ErrorEvent,
    EventBus,
    OutputEvent,
    SessionsChanged,
    StatusEvent,
    SummaryEvent,
)
from .persistence import NullStore
from .protocols import (
    PtyFactory,
    PtyInterface,
    SchedulerInterface,
    SessionStoreInterface,
    SummarizerInterface,
)
from .pty_session import PtySession
from .scheduler import SerializedScheduler, ThreadScheduler
from .settings import LIMITS, TIMING
from .status_constants import STATUS_ERROR, STATUS_IDLE, STATUS_WORKING
from .status_detector import StatusDetector
from .status_patterns import clean_prompt
from .summarizer import truncate

logger = logging.getLogger(__name__)

Data = Union[bytes, str]

LINE_END = re.compile(rb"[\r\n]")


def _now_iso() -> str:
    return datetime.now().isoformat()


@dataclass
class Session:
    """One managed agent session.

    `status` always reflects the session's StatusDetector.
    """
    id: str
    name: str
    cwd: str
    detector: StatusDetector
    summary: str = ""
    original_prompt: str = ""
    archived: bool = False
    created_at: str = field(default_factory=_now_iso)
    last_activity: str = field(default_factory=_now_iso)
    error: Optional[str] = None
    cols: int = LIMITS.default_cols
    rows: int = LIMITS.default_rows

    pty: Optional[PtyInterface] = field(default=None, repr=False)
    last_buffer: bytes = field(default=b"", repr=False)
    first_input_captured: bool = False
    input_buffer: bytes = field(default=b"", repr=False)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)
    write_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def status(self) -> str:
        return self.detector.status

    def touch(self) -> None:
        self.last_activity = _now_iso()

    def to_record(self) -> dict:
        """Plain serializable view, without process or detector handles."""
        return {
            "id": self.id,
            "name": self.name,
            "cwd": self.cwd,
            "status": self.status,
            "summary": self.summary,
            "original_prompt": self.original_prompt,
            "archived": self.archived,
            "created_at": self.created_at,
            "last_activity": self.last_activity,
            "error": self.error,
        }


def default_pty_factory(
    shell: Optional[List[str]] = None,
    agent_command: Optional[str] = "claude",
) -> PtyFactory:
    def factory(cwd: str, cols: int, rows: int) -> PtyInterface:
        return PtySession(cwd, cols=cols, rows=rows, shell=shell, agent_command=agent_command)

    return factory


class SessionManager:
    """Owns all sessions and routes input, output and lifecycle events.

    Args:
        cwd: Directory new sessions run in (default: current directory)
        pty_factory: Builds the PTY for a session; tests pass fakes
        summarizer: Summarizes long first prompts
        store: Session snapshot store; NullStore keeps sessions ephemeral
        bus: Where events are published
        scheduler: Timer source for detectors
        clock: Monotonic clock for detectors
        background_summaries: Run long-prompt summaries on a thread
        start_ticker: Start the 1s status tick thread
    """

    def __init__(
        self,
        cwd: Optional[str] = None,
        pty_factory: Optional[PtyFactory] = None,
        summarizer: Optional[SummarizerInterface] = None,
        store: Optional[SessionStoreInterface] = None,
        bus: Optional[EventBus] = None,
        scheduler: Optional[SchedulerInterface] = None,
        clock: Callable[[], float] = time.monotonic,
        background_summaries: bool = True,
        start_ticker: bool = True,
    ):
        self.cwd = cwd or os.getcwd()
        self.pty_factory = pty_factory or default_pty_factory()
        self.summarizer = summarizer
        self.store = store or NullStore()
        self.bus = bus or EventBus()
        self._scheduler = scheduler or ThreadScheduler()
        self._clock = clock
        self.background_summaries = background_summaries

        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

        self._ticker: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        if start_ticker:
            self.start_ticker()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def _get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def _all(self) -> List[Session]:
        with self._lock:
            return list(self._sessions.values())

    def get_session(self, session_id: str) -> Optional[dict]:
        session = self._get(session_id)
        return session.to_record() if session else None

    def get_all_sessions(self) -> List[dict]:
        return [s.to_record() for s in self._all()]

    def get_buffer(self, session_id: str) -> Optional[bytes]:
        """Replay buffer of the live (or last) PTY; None for unknown ids."""
        session = self._get(session_id)
        if session is None:
            return None
        with session.lock:
            if session.pty is not None:
                return session.pty.get_buffer()
            return session.last_buffer

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _new_session(self, session_id: str, name: str, cwd: str) -> Session:
        lock = threading.RLock()
        detector = StatusDetector(
            scheduler=SerializedScheduler(self._scheduler, lock),
            clock=self._clock,
        )
        session = Session(id=session_id, name=name, cwd=cwd, detector=detector, lock=lock)
        detector.on_status_change = lambda status: self._on_status_change(session, status)
        return session

    def load_sessions(self) -> int:
        """Restore saved sessions as idle placeholders without a process.

        Returns:
            Number of sessions restored
        """
        restored = 0
        for record in self.store.load():
            session = self._new_session(
                str(record["id"]),
                record.get("name") or os.path.basename(record.get("cwd") or self.cwd),
                record.get("cwd") or self.cwd,
            )
            session.summary = record.get("summary") or ""
            session.original_prompt = record.get("original_prompt") or ""
            session.archived = bool(record.get("archived", False))
            session.created_at = record.get("created_at") or session.created_at
            session.last_activity = record.get("last_activity") or session.last_activity
            session.first_input_captured = bool(session.summary)
            with self._lock:
                self._sessions[session.id] = session
            restored += 1
        if restored:
            logger.info(f"Restored {restored} session(s)")
            self._publish_sessions()
        return restored

    def create_session(self) -> dict:
        """Create a session in the manager's directory and start its process."""
        session = self._new_session(
            str(uuid.uuid4()),
            os.path.basename(os.path.normpath(self.cwd)) or self.cwd,
            self.cwd,
        )
        with self._lock:
            self._sessions[session.id] = session
        with session.lock:
            self._spawn(session)
            record = session.to_record()
        self._save()
        self._publish_sessions()
        return record

    def _spawn(self, session: Session) -> bool:
        """Start a PTY for `session`. Caller holds session.lock."""
        pty = self.pty_factory(session.cwd, session.cols, session.rows)
        pty.on_data = lambda data: self._on_output(session, pty, data)
        pty.on_exit = lambda code: self._on_exit(session, pty, code)
        session.detector.reset()

        try:
            pty.spawn()
        except OSError as e:
            message = f"Failed to start session: {e}"
            logger.warning(f"Spawn failed for session {session.id} in {session.cwd}: {e}")
            session.error = message
            session.detector.set_status(STATUS_ERROR)
            self.bus.publish(ErrorEvent(session.id, message))
            return False

        session.pty = pty
        session.error = None
        session.touch()
        session.detector.set_status(STATUS_WORKING)
        return True

    def archive_session(self, session_id: str) -> None:
        session = self._get(session_id)
        if session is None:
            return
        with session.lock:
            if session.archived:
                return
            self._kill_pty(session)
            session.archived = True
            session.detector.set_status(STATUS_IDLE)
        self._save()
        self._publish_sessions()

    def unarchive_session(self, session_id: str) -> None:
        """Un-archive without respawning; the next input starts the process."""
        session = self._get(session_id)
        if session is None:
            return
        with session.lock:
            if not session.archived:
                return
            session.archived = False
        self._save()
        self._publish_sessions()

    def rename_session(self, session_id: str, name: str) -> None:
        session = self._get(session_id)
        if session is None:
            return
        with session.lock:
            if session.name == name:
                return
            session.name = name
        self._save()
        self._publish_sessions()

    def resize_session(self, session_id: str, cols: int, rows: int) -> None:
        """Resize the terminal; remembered for the next spawn if not live."""
        session = self._get(session_id)
        if session is None or cols <= 0 or rows <= 0:
            return
        with session.lock:
            session.cols = cols
            session.rows = rows
            if session.pty is None:
                return
            try:
                session.pty.resize(cols, rows)
            except OSError as e:
                logger.debug(f"Resize failed for session {session_id}: {e}")
                return
            session.detector.on_resize()

    def delete_session(self, session_id: str) -> None:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return
        with session.lock:
            self._kill_pty(session)
            session.detector.close()
        self._save()
        self._publish_sessions()

    def kill_all(self) -> None:
        """Stop the ticker and terminate every live process."""
        self.stop_ticker()
        for session in self._all():
            with session.lock:
                self._kill_pty(session)
                session.detector.close()
        self.store.flush()

    def _kill_pty(self, session: Session) -> None:
        """Caller holds session.lock."""
        pty, session.pty = session.pty, None
        if pty is None:
            return
        session.last_buffer = pty.get_buffer()
        pty.kill()

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    def send_input(self, session_id: str, data: Data) -> None:
        session = self._get(session_id)
        if session is None:
            return
        raw = data.encode("utf-8") if isinstance(data, str) else data

        # write_lock keeps concurrent inputs in order; the write itself runs
        # without session.lock so the reader thread can drain output meanwhile
        with session.write_lock:
            with session.lock:
                if session.archived:
                    logger.debug(f"Ignoring input for archived session {session_id}")
                    return
                if session.pty is None and not self._spawn(session):
                    return
                pty = session.pty

                if not session.first_input_captured:
                    self._accumulate_first_input(session, raw)

                session.detector.on_input(raw)
                session.touch()

            try:
                pty.write(raw)
            except OSError as e:
                logger.warning(f"Write to session {session_id} failed: {e}")
        self._save()

    def _accumulate_first_input(self, session: Session, raw: bytes) -> None:
        """Caller holds session.lock."""
        session.input_buffer += raw
        match = LINE_END.search(session.input_buffer)
        if match is None:
            return

        line = session.input_buffer[: match.start()].decode("utf-8", errors="replace")
        session.input_buffer = b""
        cleaned = clean_prompt(line)
        if not cleaned:
            return

        session.first_input_captured = True
        session.original_prompt = cleaned
        if len(cleaned) <= LIMITS.summary_threshold or self.summarizer is None:
            self._set_summary(session, truncate(cleaned))
        elif self.background_summaries:
            threading.Thread(
                target=self._summarize, args=(session, cleaned),
                name=f"Summarize-{session.id[:8]}", daemon=True,
            ).start()
        else:
            self._summarize(session, cleaned)

    def _summarize(self, session: Session, prompt: str) -> None:
        summary = self.summarizer.summarize(prompt)
        with session.lock:
            if self._get(session.id) is not session:
                return
            self._set_summary(session, summary)

    def _set_summary(self, session: Session, summary: str) -> None:
        session.summary = summary
        self.bus.publish(SummaryEvent(session.id, summary, session.original_prompt))
        self._save()
        self._publish_sessions()

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def _on_output(self, session: Session, pty: PtyInterface, data: bytes) -> None:
        with session.lock:
            if session.pty is not pty:
                return
            session.touch()
            self.bus.publish(OutputEvent(session.id, data))
            session.detector.on_output(data)

    def _on_exit(self, session: Session, pty: PtyInterface, exit_code: int) -> None:
        with session.lock:
            if session.pty is not pty:
                return
            logger.info(f"Session {session.id} process exited with {exit_code}")
            session.last_buffer = pty.get_buffer()
            session.pty = None
            session.detector.close()
            session.detector.set_status(STATUS_IDLE)
        self._publish_sessions()

    def _on_status_change(self, session: Session, status: str) -> None:
        self.bus.publish(StatusEvent(session.id, status))
        self._save()

    # ------------------------------------------------------------------
    # Ticker
    # ------------------------------------------------------------------

    def tick(self) -> None:
        """Advance every session's idle fallback once."""
        for session in self._all():
            with session.lock:
                session.detector.tick()

    def start_ticker(self, interval: float = TIMING.tick_interval) -> None:
        if self._ticker is not None and self._ticker.is_alive():
            return
        self._stop_event.clear()
        self._ticker = threading.Thread(
            target=self._run_ticker, args=(interval,), name="SessionTicker", daemon=True
        )
        self._ticker.start()

    def stop_ticker(self, timeout: Optional[float] = 2.0) -> None:
        if self._ticker is None:
            return
        self._stop_event.set()
        if self._ticker is not threading.current_thread():
            self._ticker.join(timeout=timeout)
        self._ticker = None

    def _run_ticker(self, interval: float) -> None:
        while not self._stop_event.wait(interval):
            self.tick()

    # ------------------------------------------------------------------
    # Persistence / broadcast
    # ------------------------------------------------------------------

    def _save(self) -> None:
        self.store.save(self.get_all_sessions())

    def _publish_sessions(self) -> None:
        self.bus.publish(SessionsChanged(self.get_all_sessions()))
