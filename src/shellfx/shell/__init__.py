"""Command execution engine.

Builds injection-safe command lines, runs them under a shell interpreter
and exposes each run as an awaitable handle that can be piped, silenced,
made non-throwing or bounded by a timeout.

Example:
    from shellfx.shell import Shell

    sh = Shell()

    # Every interpolated value is quoted
    name = "it's; rm -rf /"
    await sh("echo {}", name)

    # Failures raise unless suppressed
    result = await sh("grep -q needle haystack.txt").nothrow()
    if result.exit_code == 1:
        print("not found")

    # Pipes and timeouts
    lines = await sh("cat log.txt").pipe(sh("wc -l")).timeout(10)
"""

from .classify import check, classify
from .command import QuotedCommand, build, command_line, template
from .errors import (
    CommandFailure,
    PipelineStageFailure,
    QuotingError,
    ShellError,
    SignalTermination,
    SpawnError,
    StdinBusyError,
    TimeoutFailure,
)
from .options import ProcessOptions, StdinMode
from .pipeline import Pipeline, pipe
from .process import BaseHandle, ProcessHandle, ProcessStdin
from .quote import Dialect, Raw, quote, quote_all
from .result import ProcessResult
from .runner import run
from .shell import Shell
from .stdin import StdinForwarder

__all__ = [
    "BaseHandle",
    "CommandFailure",
    "Dialect",
    "Pipeline",
    "PipelineStageFailure",
    "ProcessHandle",
    "ProcessOptions",
    "ProcessResult",
    "ProcessStdin",
    "QuotedCommand",
    "QuotingError",
    "Raw",
    "Shell",
    "ShellError",
    "SignalTermination",
    "SpawnError",
    "StdinBusyError",
    "StdinForwarder",
    "StdinMode",
    "TimeoutFailure",
    "build",
    "check",
    "classify",
    "command_line",
    "pipe",
    "quote",
    "quote_all",
    "run",
    "template",
]
