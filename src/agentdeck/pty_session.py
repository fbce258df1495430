"""
One pseudo-terminal process per session.

PtySession starts a login shell in a PTY, types the agent command into it
after a short settle delay, pumps output from a reader thread and keeps a
capped replay buffer for viewers that attach late.

The settle delay is a best-effort guess at when the shell is ready to
accept typing; there is no readiness signal from a login shell that
works across bash/zsh/fish profiles, so a slow profile can still eat the
first keystrokes.
"""

import errno
import fcntl
import logging
import os
import pty
import re
import select
import shutil
import signal
import struct
import termios
import threading
import time
from typing import Callable, List, Optional, Union

from .protocols import SchedulerInterface
from .scheduler import ScheduledTask, ThreadScheduler
from .settings import LIMITS, TIMING

logger = logging.getLogger(__name__)

# Attribute reset, cursor show, G0 charset reset, line wrap on
RESET_PREFIX = b"\x1b[0m\x1b[?25h\x1b(B\x1b[?7h"

# Tail of an escape sequence left at the head of the buffer after cutting
# mid-line: "[31m", "31;1m", "?25h".
_ORPHAN_FRAGMENT = re.compile(rb"^(?:\[[0-9;?]*[@-~]|[0-9;?]+[@-~])")

READ_SIZE = 4096
KILL_GRACE = 1.0


def set_winsize(fd: int, cols: int, rows: int) -> None:
    cols = max(1, int(cols))
    rows = max(1, int(rows))
    fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0))


def trim_buffer(buffer: bytearray, cap: int = LIMITS.buffer_cap, keep: int = LIMITS.buffer_keep) -> None:
    """Shrink an over-cap replay buffer in place.

    Drops from the front down to roughly `keep` bytes, moving the cut
    forward to the next line start when there is one. When the cut has to
    land mid-line, stray escape-sequence tails and UTF-8 continuation
    bytes at the new head are removed.
    """
    if len(buffer) <= cap:
        return
    cut = len(buffer) - keep
    newline = buffer.find(b"\n", cut)
    if newline != -1:
        del buffer[: newline + 1]
        return

    del buffer[:cut]
    start = 0
    while start < len(buffer) and 0x80 <= buffer[start] <= 0xBF:
        start += 1
    match = _ORPHAN_FRAGMENT.match(bytes(buffer[start:start + 32]))
    if match:
        start += match.end()
    del buffer[:start]


class PtySession:
    """A login shell in a pseudo-terminal that starts the agent CLI."""

    def __init__(
        self,
        cwd: str,
        cols: int = LIMITS.default_cols,
        rows: int = LIMITS.default_rows,
        shell: Optional[List[str]] = None,
        agent_command: Optional[str] = "claude",
        env: Optional[dict] = None,
        scheduler: Optional[SchedulerInterface] = None,
    ):
        self.cwd = cwd
        self.cols = cols
        self.rows = rows
        self.shell = shell or [os.environ.get("SHELL", "bash"), "-l"]
        self.agent_command = agent_command
        self.env = env

        self.on_data: Optional[Callable[[bytes], None]] = None
        self.on_exit: Optional[Callable[[int], None]] = None

        self.pid: Optional[int] = None
        self.fd: Optional[int] = None
        self._buffer = bytearray()
        self._lock = threading.Lock()
        self._killed = False
        self._reader: Optional[threading.Thread] = None
        self._auto_start = ScheduledTask(scheduler or ThreadScheduler(), self._type_agent_command)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def spawn(self) -> None:
        """Fork the shell.

        Raises:
            FileNotFoundError: The working directory or the shell is missing
            OSError: The PTY cannot be created
        """
        env = dict(self.env if self.env is not None else os.environ)
        env.setdefault("TERM", "xterm-256color")
        env["COLUMNS"] = str(self.cols)
        env["LINES"] = str(self.rows)

        # The child can only report a failed chdir/exec through its exit code
        if not os.path.isdir(self.cwd):
            raise FileNotFoundError(errno.ENOENT, "Working directory does not exist", self.cwd)
        if shutil.which(self.shell[0], path=env.get("PATH")) is None:
            raise FileNotFoundError(errno.ENOENT, "Shell not found", self.shell[0])

        pid, fd = pty.fork()
        if pid == 0:
            try:
                os.chdir(self.cwd)
                os.execvpe(self.shell[0], self.shell, env)
            except OSError:
                os._exit(127)

        os.set_blocking(fd, False)
        self.pid = pid
        self.fd = fd
        self._killed = False
        try:
            set_winsize(fd, self.cols, self.rows)
        except OSError as e:
            logger.debug(f"Could not set initial window size: {e}")

        self._reader = threading.Thread(
            target=self._read_loop, args=(fd, pid), name=f"PtyReader-{pid}", daemon=True
        )
        self._reader.start()

        if self.agent_command:
            self._auto_start.schedule(TIMING.settle_delay)

    def write(self, data: Union[bytes, str]) -> None:
        """Write everything, waiting while the terminal's input queue is full.

        Returns early, with the rest dropped, once the session is killed.
        """
        if isinstance(data, str):
            data = data.encode("utf-8")
        fd = self.fd
        if fd is None:
            return
        view = memoryview(data)
        while view and not self._killed:
            try:
                written = os.write(fd, view)
            except BlockingIOError:
                select.select([], [fd], [], 0.1)
                continue
            view = view[written:]

    def resize(self, cols: int, rows: int) -> None:
        self.cols = cols
        self.rows = rows
        if self.fd is not None and not self._killed:
            set_winsize(self.fd, cols, rows)

    def kill(self) -> None:
        """Terminate the process group. Idempotent.

        The reader thread closes the PTY once it notices the kill, so its
        descriptor number cannot be reused by another session under it.
        """
        with self._lock:
            if self._killed:
                return
            self._killed = True
            pid = self.pid
            self.pid = None
            self.fd = None

        self._auto_start.cancel()
        if pid is not None:
            _signal_group(pid, signal.SIGHUP)
            _reap_with_deadline(pid, KILL_GRACE)

    @property
    def is_running(self) -> bool:
        return self.pid is not None and not self._killed

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def get_buffer(self) -> bytes:
        with self._lock:
            return RESET_PREFIX + bytes(self._buffer)

    def handle_output(self, data: bytes) -> None:
        """Record output and pass it on, unless the session was killed."""
        with self._lock:
            if self._killed:
                return
            self._buffer += data
            trim_buffer(self._buffer)
        if self.on_data is not None:
            self.on_data(data)

    def _type_agent_command(self) -> None:
        try:
            self.write(f"{self.agent_command}\r")
        except OSError as e:
            logger.warning(f"Could not start agent in {self.cwd}: {e}")

    def _read_loop(self, fd: int, pid: int) -> None:
        """Pump output until EOF or kill; the only place the PTY is closed."""
        while not self._killed:
            try:
                ready, _, _ = select.select([fd], [], [], 0.1)
                if not ready:
                    continue
                chunk = os.read(fd, READ_SIZE)
            except BlockingIOError:
                continue
            except (OSError, ValueError):
                break
            if not chunk:
                break
            self.handle_output(chunk)

        try:
            os.close(fd)
        except OSError:
            pass

        with self._lock:
            if self._killed:
                return
            self._killed = True
            self.fd = None
            self.pid = None
        self._auto_start.cancel()
        exit_code = _reap(pid)
        if self.on_exit is not None:
            self.on_exit(exit_code)


def _reap(pid: int) -> int:
    """Collect a child's exit status, returning a shell-style exit code."""
    try:
        _, status = os.waitpid(pid, 0)
    except ChildProcessError:
        return 0
    if os.WIFSIGNALED(status):
        return 128 + os.WTERMSIG(status)
    if os.WIFEXITED(status):
        return os.WEXITSTATUS(status)
    return 0


def _signal_group(pid: int, sig: int) -> None:
    try:
        os.killpg(pid, sig)
    except (ProcessLookupError, PermissionError):
        try:
            os.kill(pid, sig)
        except (ProcessLookupError, PermissionError):
            pass


def _reap_with_deadline(pid: int, grace: float) -> None:
    """Wait briefly for a signalled child, then SIGKILL it."""
    deadline = time.monotonic() + grace
    while time.monotonic() < deadline:
        try:
            done, _ = os.waitpid(pid, os.WNOHANG)
        except ChildProcessError:
            return
        if done:
            return
        time.sleep(0.02)
    _signal_group(pid, signal.SIGKILL)
    _reap(pid)
