"""Short-lived calculator client.

A client races other clients for the shared inbox, wakes the server, then
sleeps until the server's worker wakes it back (or the response timeout
expires) and collects its result from its own outbox.

A process may have only one call outstanding at a time: the outbox is
named after the pid, so two concurrent calls from one process would
collide. Calls must be made from the main thread, where signals arrive.
"""

import argparse
import logging
import os
import secrets
import sys
import time
from typing import Optional

from ipc_engine import Operation, Outbox, Request, SharedInbox
from notifier import NotificationListener, notify
from protocol_config import ProtocolConfig
from protocol_errors import (
    FAILURE_SENTINEL, ContentionError, ProtocolError, RemoteCalculationError,
    ResponseTimeoutError, UnreachableTargetError,
)

logger = logging.getLogger(__name__)


class RequestClient:
    """One round trip against the server at `server_pid`.

    `call` runs the whole exchange; the CLI drives the steps individually
    so it can report progress between them.
    """

    def __init__(self, server_pid: int, config: Optional[ProtocolConfig] = None):
        self.server_pid = server_pid
        self.config = config or ProtocolConfig.from_env()
        self.pid = os.getpid()
        self.inbox = SharedInbox(self.config)
        self.outbox = Outbox(self.config, self.pid)
        self.attempts = 0
        self._deadline = 0.0

    def arm(self):
        """Start the response timeout; everything after this is bounded."""
        self._deadline = time.monotonic() + self.config.response_timeout

    def remaining(self) -> float:
        return self._deadline - time.monotonic()

    def post(self, request: Request):
        """Claim the shared inbox for `request`, retrying with a fixed random backoff.

        Any response left in our outbox by an earlier, abandoned call is
        discarded first so it cannot be taken for this call's answer.
        """
        if self.outbox.remove():
            logger.warning("[P%d] Discarded stale %s", self.pid, self.outbox.path)
        backoff = secrets.randbelow(self.config.backoff_max + 1)
        delay = (backoff + 1) * self.config.backoff_unit
        self.attempts = 0
        while self.attempts < self.config.max_retries:
            time.sleep(delay)
            self.attempts += 1
            try:
                if self.inbox.try_post(request):
                    logger.debug("[P%d] Posted request on attempt %d", self.pid, self.attempts)
                    return
            except OSError as e:
                logger.warning("[P%d] Writing %s failed: %s", self.pid, self.inbox.path, e)
                continue
            logger.debug("[P%d] Inbox occupied (attempt %d)", self.pid, self.attempts)
        raise ContentionError(
            f"inbox still occupied after {self.attempts} attempts")

    def notify_server(self):
        """Wake the server. If it cannot be reached, withdraw the posted request."""
        try:
            notify(self.server_pid, kind="server-unreachable")
        except UnreachableTargetError:
            self.inbox.remove()
            raise

    def await_response(self, listener: NotificationListener) -> int:
        """Wait for the worker's notification, then collect the outbox."""
        if not listener.wait(max(self.remaining(), 0.0)):
            raise ResponseTimeoutError(
                f"no response within {self.config.response_timeout:g} seconds")
        # Notification and file creation are not ordered; poll until the
        # outbox shows up, still bounded by the response timeout.
        while not self.outbox.exists():
            if self.remaining() <= 0:
                raise ResponseTimeoutError(
                    f"notified but {self.outbox.path} never appeared")
            time.sleep(self.config.poll_interval)
        response = self.outbox.collect()
        if not response.ok:
            raise RemoteCalculationError(f"server reported {response.error}", kind=response.error)
        return response.result

    def call(self, operand1: int, operation: int, operand2: int) -> int:
        self.arm()
        with NotificationListener() as listener:
            self.post(Request(self.pid, operand1, int(operation), operand2))
            self.notify_server()
            return self.await_response(listener)


def call(
    server_pid: int,
    operand1: int,
    operation: int,
    operand2: int,
    config: Optional[ProtocolConfig] = None,
) -> int:
    """Ask the server at `server_pid` to compute ``operand1 <operation> operand2``.

    Raises a ProtocolError subclass on any failure.
    """
    return RequestClient(server_pid, config).call(operand1, operation, operand2)


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="File-and-signal calculator client")
    p.add_argument("server_pid", type=int)
    p.add_argument("operand1", type=int)
    p.add_argument("operation", type=int,
                   help=", ".join(f"{op.value}={op.name.title()}" for op in Operation))
    p.add_argument("operand2", type=int)
    p.add_argument("--dir", dest="directory", help="Shared directory for inbox and outboxes")
    p.add_argument("--timeout", type=float, help="Response timeout in seconds")
    p.add_argument("--compat-exit-codes", action="store_true",
                   help="Exit 0 on failure (legacy behavior)")
    p.add_argument("--log-level", default=os.environ.get("CALC_IPC_LOG_LEVEL", "WARNING"))
    return p.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s %(message)s")
    config = ProtocolConfig.from_env().with_overrides(
        directory=args.directory, response_timeout=args.timeout)
    client = RequestClient(args.server_pid, config)
    try:
        client.arm()
        with NotificationListener() as listener:
            client.post(Request(client.pid, args.operand1, args.operation, args.operand2))
            client.notify_server()
            print(f"Client - Signal successfully sent to process with PID {args.server_pid}. "
                  "end of stage d.", flush=True)
            result = client.await_response(listener)
    except (ProtocolError, OSError) as e:
        logger.warning("[P%d] Request failed: %s", client.pid, e)
        print(FAILURE_SENTINEL, flush=True)
        return 0 if args.compat_exit_codes else 1
    print(f"Client - Received result from server: {result}. end of stage j.", flush=True)
    return 0


if __name__ == "__main__":
    sys.exit(main())
