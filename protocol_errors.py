"""Error taxonomy for the calculator IPC protocol.

Every failure a caller can observe is a :class:`ProtocolError` carrying a
short ``kind`` tag. The CLIs collapse all of them into one failure sentinel;
library callers and tests can tell them apart.
"""

from typing import Optional

# Printed by both CLIs on any failure.
FAILURE_SENTINEL = "ERROR_FROM_EX2"


class ProtocolError(Exception):
    """Base class for protocol failures.

    Attributes
    ----------
    kind : str
        Stable machine-readable tag (``inbox-contention``, ``corrupt-response``...).
    """

    kind = "protocol-error"

    def __init__(self, message: str = "", *, kind: Optional[str] = None) -> None:
        super().__init__(message or self.kind)
        if kind is not None:
            self.kind = kind
        self.message = message or self.kind

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}" if self.message != self.kind else self.kind


class ContentionError(ProtocolError):
    kind = "inbox-contention"


class UnreachableTargetError(ProtocolError):
    kind = "server-unreachable"


class ResponseTimeoutError(ProtocolError, TimeoutError):
    kind = "response-timeout"


class MalformedMessageError(ProtocolError):
    kind = "corrupt-response"


class BadOperationError(ProtocolError):
    kind = "bad-operation"


class DivisionByZeroError(ProtocolError, ZeroDivisionError):
    kind = "divide-by-zero"


class RemoteCalculationError(ProtocolError):
    """The server reported a calculation failure in an explicit error response."""

    kind = "remote-error"
