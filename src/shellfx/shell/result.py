"""Settled outcome of a process."""

from dataclasses import dataclass
from typing import Optional


def _trim(text: str) -> str:
    if text.endswith("\r\n"):
        return text[:-2]
    if text.endswith("\n"):
        return text[:-1]
    return text


@dataclass(frozen=True)
class ProcessResult:
    """Captured output and exit status of one process.

    ``exit_code`` is ``None`` when the process was killed by a signal or never
    started; ``error`` holds the OS error of a failed spawn.
    """

    command: str
    stdout_bytes: bytes = b""
    stderr_bytes: bytes = b""
    exit_code: Optional[int] = None
    signal: Optional[str] = None
    duration: float = 0.0
    pid: Optional[int] = None
    timed_out: bool = False
    error: Optional[OSError] = None

    @property
    def stdout(self) -> str:
        return self.stdout_bytes.decode("utf-8", errors="replace")

    @property
    def stderr(self) -> str:
        return self.stderr_bytes.decode("utf-8", errors="replace")

    @property
    def ok(self) -> bool:
        return self.error is None and self.signal is None and not self.timed_out and self.exit_code == 0

    def lines(self) -> list[str]:
        return self.stdout.splitlines()

    def __str__(self) -> str:
        return _trim(self.stdout)
