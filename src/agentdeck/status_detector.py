"""
Live status classification for one session.

StatusDetector turns the terminal byte stream of a session into one of
five statuses: idle, working, waiting, draft, error. It is fed four kinds
of input:

- on_output(): bytes the agent wrote to the terminal
- on_input(): bytes the user typed
- tick(): called once a second by the session manager
- on_resize(): the terminal was resized

Two text buffers are kept. The burst buffer collects output that arrives
without a gap longer than the burst window and is used for the immediate
waiting/working decision. The rolling window keeps the last couple of
thousand characters regardless of timing and is what tick() inspects once
output has gone quiet.

The detector never blocks and has no threads of its own; deferred work
goes through ScheduledTask on the scheduler it is given, which the
session manager wraps so callbacks run under the session lock.
"""

import codecs
import time
from typing import Callable, Optional, Union

from .protocols import SchedulerInterface
from .scheduler import ScheduledTask, ThreadScheduler
from .settings import LIMITS, TIMING
from .status_constants import (
    ALL_STATUSES,
    STATUS_DRAFT,
    STATUS_IDLE,
    STATUS_WAITING,
    STATUS_WORKING,
)
from .status_patterns import (
    DEFAULT_RULE_TABLE,
    RuleTable,
    is_redraw,
    strip_ansi,
    strip_terminal_responses,
    visible_length,
)

Data = Union[bytes, str]

ENTER_CHARS = ("\r", "\n")
ERASE_CHARS = ("\x7f", "\x08")


class StatusDetector:
    """Heuristic state machine classifying one session's terminal."""

    def __init__(
        self,
        scheduler: Optional[SchedulerInterface] = None,
        clock: Callable[[], float] = time.monotonic,
        rules: Optional[RuleTable] = None,
        on_status_change: Optional[Callable[[str], None]] = None,
    ):
        self._clock = clock
        self._rules = rules or DEFAULT_RULE_TABLE
        self.on_status_change = on_status_change

        scheduler = scheduler or ThreadScheduler()
        self._working_debounce = ScheduledTask(scheduler, self._debounce_fired)
        self._resize_cooldown = ScheduledTask(scheduler, lambda: None)

        self._output_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._input_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

        self.status = STATUS_IDLE
        self.draft_length = 0
        self.last_output_time = 0.0
        self._burst = ""
        self._burst_last_time = 0.0
        self._window = ""

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def on_output(self, data: Data) -> None:
        """Classify a chunk of agent output."""
        text = self._decode(self._output_decoder, data)
        now = self._clock()
        self.last_output_time = now

        self._window = (self._window + text)[-LIMITS.rolling_window_chars:]

        if self._resize_cooldown.pending or is_redraw(text):
            return

        if now - self._burst_last_time > TIMING.burst_window:
            self._burst = ""
        self._burst_last_time = now
        self._burst += text

        visible = strip_ansi(self._burst)
        if self._rules.is_waiting(visible):
            self._working_debounce.cancel()
            self._set(STATUS_WAITING)
            return

        if visible_length(self._burst) > LIMITS.working_threshold and not self.draft_length:
            self._working_debounce.cancel()
            self._set(STATUS_WORKING)
            return

        if not self._working_debounce.pending and self.status != STATUS_WORKING:
            self._working_debounce.schedule(TIMING.working_debounce)

    def on_input(self, data: Data) -> None:
        """Track what the user is typing."""
        text = self._decode(self._input_decoder, data)
        text = strip_ansi(strip_terminal_responses(text))

        for ch in text:
            if ch in ENTER_CHARS:
                self.draft_length = 0
                if self.status == STATUS_DRAFT:
                    self._set(STATUS_WORKING)
                continue
            if ch in ERASE_CHARS:
                self.draft_length = max(0, self.draft_length - 1)
            elif ch == "\t" or ch.isprintable():
                self.draft_length += 1
            else:
                continue

            if self.draft_length > 0 and self.status != STATUS_WORKING:
                self._set(STATUS_DRAFT)
            elif self.draft_length == 0 and self.status == STATUS_DRAFT:
                self._set(STATUS_IDLE)

    def tick(self) -> None:
        """Fall back out of `working` once output has been quiet long enough."""
        if self.status != STATUS_WORKING:
            return
        if self._clock() - self.last_output_time <= TIMING.idle_silence:
            return

        window = strip_ansi(self._window)
        if self._rules.is_waiting(window):
            self._set(STATUS_WAITING)
        elif self._rules.is_idle(window):
            self._set(STATUS_IDLE)
        elif self.draft_length:
            self._set(STATUS_DRAFT)
        else:
            self._set(STATUS_IDLE)

    def on_resize(self) -> None:
        """Start the repaint cooldown after a terminal resize."""
        self._resize_cooldown.schedule(TIMING.resize_cooldown)
        self._working_debounce.cancel()
        self._burst = ""
        if self.status == STATUS_WORKING and not self.draft_length:
            self._set(STATUS_IDLE)

    # ------------------------------------------------------------------
    # Explicit control
    # ------------------------------------------------------------------

    def set_status(self, status: str, notify: bool = True) -> None:
        """Set the status from outside the heuristics (spawn, exit, errors)."""
        if notify:
            self._set(status)
        else:
            if status not in ALL_STATUSES:
                raise ValueError(f"Unknown status: {status}")
            self.status = status

    def reset(self) -> None:
        """Forget buffers and timers; used when the process is replaced."""
        self.close()
        self._burst = ""
        self._burst_last_time = 0.0
        self._window = ""
        self.draft_length = 0
        self.last_output_time = 0.0
        self._output_decoder.reset()
        self._input_decoder.reset()

    def close(self) -> None:
        self._working_debounce.cancel()
        self._resize_cooldown.cancel()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _debounce_fired(self) -> None:
        if self.status == STATUS_WORKING or self.draft_length:
            return
        if visible_length(self._burst) > LIMITS.debounce_threshold:
            self._set(STATUS_WORKING)

    def _set(self, status: str) -> None:
        if status not in ALL_STATUSES:
            raise ValueError(f"Unknown status: {status}")
        if status == self.status:
            return
        self.status = status
        if self.on_status_change is not None:
            self.on_status_change(status)

    @staticmethod
    def _decode(decoder: codecs.IncrementalDecoder, data: Data) -> str:
        if isinstance(data, str):
            return data
        return decoder.decode(data)
