"""Structured errors raised by the command execution engine.

Every error that describes a finished (or failed-to-start) process carries
the full ``ProcessResult`` so callers that catch it can still inspect the
partial output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:
    from .result import ProcessResult

STDERR_TAIL = 2000


def _describe(headline: str, result: Optional["ProcessResult"]) -> str:
    if result is None:
        return headline
    lines = [f"{headline}: {result.command}"]
    stderr = result.stderr.strip()
    if stderr:
        if len(stderr) > STDERR_TAIL:
            stderr = "..." + stderr[-STDERR_TAIL:]
        lines.append(stderr)
    return "\n".join(lines)


class ShellError(Exception):
    """Base class for all command execution errors."""

    def __init__(self, message: str, result: Optional["ProcessResult"] = None):
        super().__init__(message)
        self.result = result

    @property
    def command(self) -> str | None:
        return self.result.command if self.result else None

    @property
    def exit_code(self) -> int | None:
        return self.result.exit_code if self.result else None

    @property
    def stdout(self) -> str:
        return self.result.stdout if self.result else ""

    @property
    def stderr(self) -> str:
        return self.result.stderr if self.result else ""


class QuotingError(ShellError, ValueError):
    """Raised when a value cannot be represented safely for a shell dialect."""


class SpawnError(ShellError):
    """Raised when the shell interpreter could not be started."""

    def __init__(self, result: "ProcessResult"):
        cause = result.error
        super().__init__(f"Failed to spawn process: {cause} ({result.command})", result)
        self.cause = cause


class CommandFailure(ShellError):
    """Raised when a command exits with a nonzero status."""

    def __init__(self, result: "ProcessResult"):
        super().__init__(_describe(f"Command failed with exit code {result.exit_code}", result), result)


class SignalTermination(ShellError):
    """Raised when a command was terminated by a signal."""

    def __init__(self, result: "ProcessResult"):
        super().__init__(_describe(f"Command was killed with {result.signal}", result), result)
        self.signal = result.signal


class TimeoutFailure(ShellError):
    """Raised when a command did not settle within its configured timeout."""

    def __init__(self, result: "ProcessResult", timeout: float | None = None):
        if timeout is not None:
            headline = f"Command timed out after {timeout:g}s"
        else:
            headline = "Command timed out"
        super().__init__(_describe(headline, result), result)
        self.timeout = timeout
        self.signal = result.signal


class PipelineStageFailure(ShellError):
    """Raised when a stage of a pipeline failed.

    ``stage`` is the index of the stage the failure is attributed to and
    ``cause`` the error that stage raised. Under the ``all`` attribution
    policy ``failures`` lists every failing stage; under ``first`` it holds
    only the attributed one.
    """

    def __init__(self, stage: int, cause: ShellError, failures: Sequence[tuple[int, ShellError]] = ()):
        super().__init__(f"Pipeline stage {stage} failed: {cause}", cause.result)
        self.stage = stage
        self.cause = cause
        self.failures = list(failures) or [(stage, cause)]
        self.__cause__ = cause


class StdinBusyError(ShellError):
    """Raised when stdin forwarding is already leased and the policy rejects waiters."""
