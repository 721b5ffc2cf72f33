"""Runtime configuration shared by the server, its workers and the clients.

Values resolve from ``CALC_IPC_*`` environment variables with defaults that
match the classic calculator wire layout (``toServer.txt`` inbox,
``{pid}_toClient.txt`` outboxes, 30 s response and 60 s idle timeouts).
"""

import os
from dataclasses import dataclass, fields, replace
from typing import Mapping, Optional

ENV_PREFIX = "CALC_IPC_"


def _is_on(val: Optional[str]) -> bool:
    return (val or "0").strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class ProtocolConfig:
    directory: str = "."
    inbox_name: str = "toServer.txt"
    outbox_suffix: str = "_toClient.txt"
    response_timeout: float = 30.0
    idle_timeout: float = 60.0
    max_retries: int = 10
    backoff_max: int = 5
    backoff_unit: float = 0.01
    poll_interval: float = 0.01
    explicit_errors: bool = False

    def __post_init__(self):
        if not self.inbox_name or os.sep in self.inbox_name:
            raise ValueError(f"inbox_name must be a plain file name, got {self.inbox_name!r}")
        if not self.outbox_suffix:
            raise ValueError("outbox_suffix must not be empty")
        for name in ("response_timeout", "idle_timeout", "backoff_unit", "poll_interval"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if self.backoff_max < 0:
            raise ValueError("backoff_max must not be negative")

    @property
    def inbox_path(self) -> str:
        return os.path.join(self.directory, self.inbox_name)

    def outbox_path(self, requester: int) -> str:
        return os.path.join(self.directory, f"{requester}{self.outbox_suffix}")

    def with_overrides(self, **overrides) -> "ProtocolConfig":
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ProtocolConfig":
        env = os.environ if environ is None else environ
        values = {}
        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw.strip() == "":
                continue
            if f.type in (bool, "bool"):
                values[f.name] = _is_on(raw)
            elif f.type in (int, "int"):
                values[f.name] = int(raw)
            elif f.type in (float, "float"):
                values[f.name] = float(raw)
            else:
                values[f.name] = raw.strip()
        return cls(**values)
