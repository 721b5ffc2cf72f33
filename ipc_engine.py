"""Filesystem slots and wire messages used by the calculator protocol.

Two kinds of slot live in the shared directory:

* the **shared inbox**, a single well-known file whose atomic exclusive
  creation is the only mutual-exclusion primitive between clients, and
* one **outbox** per requester, named from the requester's pid.

The existence of a slot is itself the flag ("request pending" / "response
ready"); the content is a short line of ASCII text.
"""

import enum
import logging
import os
import re
from dataclasses import dataclass
from typing import Optional

from protocol_config import ProtocolConfig
from protocol_errors import MalformedMessageError

logger = logging.getLogger(__name__)

ERROR_PREFIX = "ERROR"

_RESULT_RE = re.compile(r"-?[0-9]+")
_ERROR_RE = re.compile(ERROR_PREFIX + r" ([A-Za-z0-9_-]+)")


class Operation(enum.IntEnum):
    ADD = 1
    SUB = 2
    MUL = 3
    DIV = 4


@dataclass(frozen=True)
class Request:
    requester: int
    operand1: int
    operation: int
    operand2: int

    def serialize(self) -> str:
        return f"{self.requester} {self.operand1} {self.operation} {self.operand2}"

    @classmethod
    def parse(cls, text: str) -> "Request":
        """Parse ``"pid n1 op n2"``.

        The operation code is kept as a raw integer; unknown codes are a
        worker-side failure, not a parse failure.
        """
        parts = text.split()
        if len(parts) != 4:
            raise MalformedMessageError(
                f"expected 4 fields, got {len(parts)}: {text!r}", kind="corrupt-request")
        try:
            requester, operand1, operation, operand2 = (int(p) for p in parts)
        except ValueError:
            raise MalformedMessageError(
                f"non-integer field in {text!r}", kind="corrupt-request") from None
        if requester <= 0:
            raise MalformedMessageError(
                f"invalid requester identity {requester}", kind="corrupt-request")
        return cls(requester, operand1, operation, operand2)


@dataclass(frozen=True)
class Response:
    result: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def serialize(self) -> str:
        if self.error is not None:
            return f"{ERROR_PREFIX} {self.error}"
        return str(self.result)

    @classmethod
    def parse(cls, text: str) -> "Response":
        body = text.strip()
        marker = _ERROR_RE.fullmatch(body)
        if marker:
            return cls(error=marker.group(1))
        if not _RESULT_RE.fullmatch(body):
            raise MalformedMessageError(f"not an integer result or error marker: {text!r}")
        return cls(result=int(body))


class FileSlot:
    """A single file in the shared directory whose existence is a flag.

    Subclasses provide the write/consume side; `exists`, `status` and
    `type_name` are shared.
    """

    def __init__(self, path: str):
        self.path = path

    def exists(self) -> bool:
        return os.path.exists(self.path)

    def status(self) -> str:
        return f"{self.type_name()}: {'occupied' if self.exists() else 'empty'}"

    def type_name(self) -> str:
        return type(self).__name__

    def remove(self) -> bool:
        """Delete the slot. Returns False if it was already gone."""
        try:
            os.remove(self.path)
        except FileNotFoundError:
            return False
        return True

    def _read_all(self) -> str:
        with open(self.path, "rb") as f:
            size = os.fstat(f.fileno()).st_size
            data = f.read(size)
        try:
            return data.decode("ascii")
        except UnicodeDecodeError:
            raise MalformedMessageError(
                f"non-ASCII content in {self.path}", kind=self._malformed_kind) from None

    _malformed_kind = "corrupt-response"


class SharedInbox(FileSlot):
    """The one slot every request passes through."""

    _malformed_kind = "corrupt-request"

    def __init__(self, config: ProtocolConfig):
        super().__init__(config.inbox_path)

    def try_post(self, request: Request) -> bool:
        """Atomically create the inbox holding `request`.

        Returns False when another request already occupies it. If the write
        after a successful create fails, the partial inbox is removed before
        the error propagates so the slot is not left blocked.
        """
        try:
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o666)
        except FileExistsError:
            return False
        try:
            data = request.serialize().encode("ascii")
            while data:
                written = os.write(fd, data)
                data = data[written:]
        except OSError:
            os.close(fd)
            self.remove()
            raise
        os.close(fd)
        return True

    def drain(self) -> Optional[str]:
        """Read the pending request text and free the slot.

        Returns None if no request is pending. The file is deleted before the
        caller gets the content, so the next client can race for the slot
        while this request is being handled.
        """
        try:
            text = self._read_all()
        except FileNotFoundError:
            return None
        except MalformedMessageError:
            self.remove()
            raise
        self.remove()
        return text


class Outbox(FileSlot):
    """Response slot addressed to exactly one requester."""

    def __init__(self, config: ProtocolConfig, requester: int):
        super().__init__(config.outbox_path(requester))
        self.requester = requester

    def deliver(self, response: Response):
        # Owner-only permissions, stale leftovers truncated.
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        # O_CREAT's mode only applies to new files.
        os.fchmod(fd, 0o600)
        with os.fdopen(fd, "w", encoding="ascii") as f:
            f.write(response.serialize())

    def collect(self) -> Response:
        """Read and delete the outbox, returning the parsed response.

        A failed delete is logged only; the response has already been read.
        """
        text = self._read_all()
        try:
            os.remove(self.path)
        except OSError as e:
            logger.warning("[P%d] Could not remove outbox %s: %s", os.getpid(), self.path, e)
        return Response.parse(text)
