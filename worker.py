import logging
import logging.handlers
import os
import sys
import multiprocessing as mp
from typing import Optional

from ipc_engine import Operation, Outbox, Request, Response
from notifier import notify
from protocol_config import ProtocolConfig
from protocol_errors import (
    BadOperationError, DivisionByZeroError, ProtocolError, UnreachableTargetError
)

logger = logging.getLogger(__name__)

# Worker exit codes, reported back to the dispatch loop.
EXIT_DELIVERED = 0
EXIT_NOT_DELIVERED = 2
EXIT_UNREACHABLE = 3
EXIT_IO_ERROR = 4


def configure_process_logging(log_q: Optional[mp.Queue] = None, level: int = logging.INFO):
    """Route this process's log records to `log_q` when one is given.

    Used for processes spawned by the headless runner and the dispatch
    server, whose logs are collected centrally.
    """
    if log_q is None:
        return
    root = logging.getLogger()
    root.handlers[:] = [logging.handlers.QueueHandler(log_q)]
    root.setLevel(level)


def _truncating_div(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b > 0) else -q


def apply_operation(operand1: int, operation: int, operand2: int) -> int:
    """Integer arithmetic with C semantics for division (truncate toward zero)."""
    if operation == Operation.ADD:
        return operand1 + operand2
    if operation == Operation.SUB:
        return operand1 - operand2
    if operation == Operation.MUL:
        return operand1 * operand2
    if operation == Operation.DIV:
        if operand2 == 0:
            raise DivisionByZeroError(f"{operand1} / 0")
        return _truncating_div(operand1, operand2)
    raise BadOperationError(f"unknown operation code {operation}")


def compute(request: Request, config: ProtocolConfig) -> int:
    """Compute `request` and deliver the result to the requester's outbox.

    With the default (compatible) behavior a calculation error leaves no
    outbox and sends no notification; the requester sees its own timeout.
    With ``config.explicit_errors`` the error is written as an error
    response and the requester is notified.
    """
    pid = os.getpid()
    outbox = Outbox(config, request.requester)
    try:
        response = Response(result=apply_operation(
            request.operand1, request.operation, request.operand2))
    except ProtocolError as e:
        if not config.explicit_errors:
            logger.error("[P%d] %s for PID %d; no response delivered", pid, e, request.requester)
            return EXIT_NOT_DELIVERED
        logger.warning("[P%d] %s for PID %d; delivering error response", pid, e, request.requester)
        response = Response(error=e.kind)

    try:
        outbox.deliver(response)
    except OSError as e:
        logger.error("[P%d] Could not write %s: %s", pid, outbox.path, e)
        return EXIT_IO_ERROR

    try:
        notify(request.requester, kind="requester-unreachable")
    except UnreachableTargetError as e:
        logger.warning("[P%d] Response written but requester not notified: %s", pid, e)
        return EXIT_UNREACHABLE

    logger.info("[P%d] Created response file '%s' for client with PID %d",
                pid, os.path.basename(outbox.path), request.requester)
    return EXIT_DELIVERED


def calculation_worker(
    request: Request,
    config: ProtocolConfig,
    log_q: Optional[mp.Queue] = None,
    log_level: int = logging.INFO,
):
    """Process entry point: one computation, one delivery, then exit."""
    configure_process_logging(log_q, log_level)
    sys.exit(compute(request, config))
