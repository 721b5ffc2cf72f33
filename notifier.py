"""One-bit, payload-free notifications between processes.

`notify` sends SIGUSR1 to a pid. `NotificationListener` turns incoming
SIGUSR1 deliveries into bytes on a self-pipe, so waiting for a notification
is a plain ``select`` with a timeout and all protocol work happens in the
waiter's own context rather than inside the signal handler.

Deliveries coalesce: several signals arriving before `wait` runs produce a
single wake-up.
"""

import errno
import logging
import os
import select
import signal
import time
from typing import Optional

import psutil

from protocol_errors import UnreachableTargetError

logger = logging.getLogger(__name__)

NOTIFY_SIGNAL = signal.SIGUSR1


def notify(pid: int, kind: str = "server-unreachable"):
    """Wake the process `pid`.

    Raises UnreachableTargetError (tagged with `kind`) when `pid` is not a
    valid live process we may signal. Non-positive pids are refused because
    ``kill`` would address a whole process group.
    """
    if pid <= 0:
        raise UnreachableTargetError(f"invalid process identity {pid}", kind=kind)
    if not psutil.pid_exists(pid):
        raise UnreachableTargetError(f"no process with PID {pid}", kind=kind)
    try:
        os.kill(pid, NOTIFY_SIGNAL)
    except (ProcessLookupError, PermissionError) as e:
        raise UnreachableTargetError(f"cannot signal PID {pid}: {e}", kind=kind) from e


class NotificationListener:
    """Receive notifications addressed to this process.

    Use as a context manager; the previous SIGUSR1 disposition is restored on
    exit, except that the default (terminate) disposition becomes SIG_IGN.
    Must be installed from the main thread.
    """

    def __init__(self):
        self._rfd: Optional[int] = None
        self._wfd: Optional[int] = None
        self._previous = None

    def install(self) -> "NotificationListener":
        self._rfd, self._wfd = os.pipe()
        os.set_blocking(self._rfd, False)
        os.set_blocking(self._wfd, False)
        self._previous = signal.signal(NOTIFY_SIGNAL, self._on_signal)
        return self

    def close(self):
        if self._rfd is None:
            return
        previous = self._previous
        if previous in (None, signal.SIG_DFL):
            # A late notification after a timed-out wait must not kill the process.
            previous = signal.SIG_IGN
        signal.signal(NOTIFY_SIGNAL, previous)
        os.close(self._rfd)
        os.close(self._wfd)
        self._rfd = self._wfd = None

    def __enter__(self):
        return self.install()

    def __exit__(self, *exc):
        self.close()

    def _on_signal(self, signum, frame):
        self.wake()

    def wake(self):
        """Make the next (or current) `wait` return as if notified."""
        try:
            os.write(self._wfd, b"!")
        except BlockingIOError:
            # Pipe full: a wake-up is already pending.
            pass

    def wait(self, timeout: float) -> bool:
        """Block until a notification arrives or `timeout` seconds pass.

        Returns True on notification. Any notifications already pending are
        consumed together.
        """
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            try:
                ready, _, _ = select.select([self._rfd], [], [], remaining)
            except InterruptedError:
                continue
            if ready and self._drain():
                return True

    def _drain(self) -> bool:
        got = False
        while True:
            try:
                chunk = os.read(self._rfd, 64)
            except BlockingIOError:
                return got
            except OSError as e:
                if e.errno == errno.EINTR:
                    continue
                raise
            if not chunk:
                return got
            got = True
