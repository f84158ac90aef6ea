"""Per-process configuration snapshot."""

from __future__ import annotations

import os
import shutil
import signal
import sys
from enum import Enum
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .quote import Dialect

DEFAULT_KILL_GRACE = 5.0

PipelineFailure = Literal["first", "all"]


class StdinMode(str, Enum):
    """Where a child process reads its stdin from.

    ``inherit`` shares the parent's stdin, ``buffered`` feeds only the data
    written to the handle's stdin, ``async`` forwards the parent's stdin
    chunk by chunk through a ``StdinForwarder``.
    """

    INHERIT = "inherit"
    BUFFERED = "buffered"
    ASYNC = "async"


def detect_shell() -> str:
    """Return the preferred shell interpreter for this platform."""
    if sys.platform == "win32":
        for name in ("pwsh", "powershell"):
            path = shutil.which(name)
            if path:
                return path
        return "powershell.exe"
    bash = shutil.which("bash")
    if bash:
        return bash
    return "/bin/sh"


def signal_number(name: str) -> int:
    """Resolve a signal name such as ``TERM`` or ``SIGKILL`` to its number."""
    text = name.strip().upper()
    if not text.startswith("SIG"):
        text = "SIG" + text
    try:
        return int(signal.Signals[text])
    except KeyError:
        raise ValueError(f"unknown signal: {name}") from None


def signal_name(number: int) -> str:
    try:
        return signal.Signals(number).name
    except ValueError:
        return f"SIG{number}"


class ProcessOptions(BaseModel):
    """Options captured when a process is spawned.

    Instances are immutable; use ``with_`` to derive a modified copy.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    shell: str = Field(default_factory=detect_shell)
    prefix: str = ""
    dialect: Optional[Dialect] = None
    cwd: Optional[str] = None
    env: Dict[str, str] = Field(default_factory=dict)
    verbose: bool = False
    quiet: bool = False
    nothrow: bool = False
    timeout: Optional[float] = None
    kill_signal: str = "SIGTERM"
    kill_grace: float = DEFAULT_KILL_GRACE
    stdin: StdinMode = StdinMode.INHERIT
    pipeline_failure: PipelineFailure = "first"

    @field_validator("dialect", mode="before")
    @classmethod
    def _parse_dialect(cls, value: Any) -> Any:
        if value is None or isinstance(value, Dialect):
            return value
        return Dialect.parse(str(value))

    @field_validator("kill_signal")
    @classmethod
    def _check_signal(cls, value: str) -> str:
        signal_number(value)
        return value

    @field_validator("timeout", "kill_grace")
    @classmethod
    def _check_duration(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and value < 0:
            raise ValueError(f"duration must not be negative: {value}")
        return value

    @property
    def quoting(self) -> Dialect:
        """Dialect used for quoting, derived from the shell when unset."""
        return self.dialect or Dialect.for_shell(self.shell)

    def with_(self, **overrides: Any) -> "ProcessOptions":
        """Return a validated copy with ``overrides`` applied."""
        if not overrides:
            return self
        return type(self).model_validate({**self.model_dump(), **overrides})

    def argv(self, command: str) -> list[str]:
        """Interpreter argument vector that runs ``command``."""
        script = f"{self.prefix}{command}"
        if self.quoting is Dialect.POWERSHELL:
            return [self.shell, "-NoProfile", "-Command", script]
        return [self.shell, "-c", script]

    def environment(self) -> Optional[Dict[str, str]]:
        """Environment for the child; ``None`` inherits the parent's as-is."""
        if not self.env:
            return None
        return {**os.environ, **self.env}
