"""Long-lived calculator server.

The dispatch loop sleeps until a client notification (or the idle timeout)
wakes it, drains the shared inbox, frees the slot, and hands the request to
a freshly spawned worker process. It waits for that worker before going
back to sleep, so at most one computation is in flight while the next
client is already free to post its request.

Exit codes: 0 after the idle timeout with no request ever served, 0 on
SIGINT/SIGTERM, 1 when the shared directory fails with an I/O error.
"""

import argparse
import enum
import logging
import multiprocessing as mp
import os
import signal
import sys
from typing import Optional

from ipc_engine import Request, SharedInbox
from notifier import NotificationListener
from protocol_config import ProtocolConfig
from protocol_errors import MalformedMessageError
from worker import calculation_worker, configure_process_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_IO_ERROR = 1


class ServerState(enum.Enum):
    IDLE = "idle"
    DRAINING = "draining"
    DISPATCHING = "dispatching"
    TERMINATED = "terminated"


class DispatchServer:
    """Single-threaded dispatch loop. `serve` must run in the main thread."""

    def __init__(
        self,
        config: ProtocolConfig,
        log_q: Optional[mp.Queue] = None,
        log_level: int = logging.INFO,
    ):
        self.config = config
        self.inbox = SharedInbox(config)
        self.log_q = log_q
        self.log_level = log_level
        self.state = ServerState.IDLE
        # Once set, the idle timeout no longer terminates the server.
        self.request_seen = False
        self.served = 0
        self._stopping = False
        self._listener: Optional[NotificationListener] = None

    def serve(self, ready=None) -> int:
        """Run until idle timeout (with no history), a stop signal or fatal I/O.

        `ready`, if given, is set once notifications can be received.
        """
        pid = os.getpid()
        with NotificationListener() as listener:
            self._listener = listener
            previous = {s: signal.signal(s, self._on_stop) for s in (signal.SIGINT, signal.SIGTERM)}
            try:
                if self.inbox.exists():
                    logger.warning("[P%d] Stale inbox %s present at startup", pid, self.inbox.path)
                logger.info("[P%d] Server ready, waiting on %s (%s)",
                            pid, self.inbox.path, self.inbox.status())
                if ready is not None:
                    ready.set()
                return self._loop(listener)
            finally:
                for s, handler in previous.items():
                    signal.signal(s, handler)
                self._listener = None
                self.state = ServerState.TERMINATED

    def _loop(self, listener: NotificationListener) -> int:
        pid = os.getpid()
        while True:
            self.state = ServerState.IDLE
            notified = listener.wait(self.config.idle_timeout)
            if self._stopping:
                logger.info("[P%d] Stopping after %d request(s); %s",
                            pid, self.served, self.inbox.status())
                return EXIT_OK
            if not notified:
                if not self.request_seen:
                    logger.error("[P%d] No signal was given in the last %g seconds",
                                 pid, self.config.idle_timeout)
                    return EXIT_OK
                continue
            try:
                self.handle_notification()
            except OSError as e:
                logger.error("[P%d] Fatal I/O error on %s: %s", pid, self.config.directory, e)
                return EXIT_IO_ERROR

    def handle_notification(self) -> Optional[int]:
        """One Draining -> Dispatching cycle.

        Returns the worker's exit code, or None when there was nothing
        (or nothing usable) in the inbox.
        """
        pid = os.getpid()
        self.state = ServerState.DRAINING
        try:
            text = self.inbox.drain()
        except MalformedMessageError as e:
            logger.error("[P%d] Dropped request: %s", pid, e)
            return None
        if text is None:
            logger.warning("[P%d] Notified but no request pending", pid)
            return None
        try:
            request = Request.parse(text)
        except MalformedMessageError as e:
            logger.error("[P%d] Dropped request: %s", pid, e)
            return None

        self.request_seen = True
        self.state = ServerState.DISPATCHING
        return self.dispatch(request)

    def dispatch(self, request: Request) -> int:
        proc = mp.Process(
            target=calculation_worker,
            args=(request, self.config, self.log_q, self.log_level),
            daemon=True,
        )
        proc.start()
        logger.info("[P%d] Child process created with PID: %d", os.getpid(), proc.pid)
        proc.join()
        self.served += 1
        if proc.exitcode != 0:
            logger.warning("[P%d] Worker %d for PID %d exited with %s",
                           os.getpid(), proc.pid, request.requester, proc.exitcode)
        return proc.exitcode

    def _on_stop(self, signum, frame):
        self._stopping = True
        if self._listener is not None:
            self._listener.wake()


def run_server(
    config: ProtocolConfig,
    ready=None,
    log_q: Optional[mp.Queue] = None,
    log_level: int = logging.INFO,
) -> int:
    """Process entry point used by the headless runner and the tests."""
    configure_process_logging(log_q, log_level)
    code = DispatchServer(config, log_q, log_level).serve(ready)
    sys.exit(code)


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="File-and-signal calculator server")
    p.add_argument("--dir", dest="directory", help="Shared directory for inbox and outboxes")
    p.add_argument("--idle-timeout", type=float, help="Seconds to wait for a first request")
    p.add_argument("--explicit-errors", action="store_true", default=None,
                   help="Send error responses instead of staying silent on bad calculations")
    p.add_argument("--log-level", default=os.environ.get("CALC_IPC_LOG_LEVEL", "INFO"))
    return p.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(message)s")
    config = ProtocolConfig.from_env().with_overrides(
        directory=args.directory,
        idle_timeout=args.idle_timeout,
        explicit_errors=args.explicit_errors,
    )
    print(f"Server - PID {os.getpid()}, inbox {config.inbox_path}", flush=True)
    return DispatchServer(config).serve()


if __name__ == "__main__":
    sys.exit(main())
