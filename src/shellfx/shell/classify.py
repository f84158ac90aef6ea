"""Decide whether a settled process is a success or which failure it is."""

from typing import Optional

from .errors import CommandFailure, ShellError, SignalTermination, SpawnError, TimeoutFailure
from .options import ProcessOptions
from .result import ProcessResult


def classify(result: ProcessResult, options: Optional[ProcessOptions] = None) -> Optional[ShellError]:
    """Return the error describing ``result``, or ``None`` on success."""
    if result.error is not None:
        return SpawnError(result)
    if result.timed_out:
        return TimeoutFailure(result, options.timeout if options else None)
    if result.signal is not None:
        return SignalTermination(result)
    if result.exit_code != 0:
        return CommandFailure(result)
    return None


def suppressible(error: ShellError) -> bool:
    """Spawn failures carry no meaningful result and are never suppressed."""
    return not isinstance(error, SpawnError)


def check(result: ProcessResult, options: ProcessOptions) -> ProcessResult:
    """Raise the classified error unless ``nothrow`` suppresses it."""
    error = classify(result, options)
    if error is None:
        return result
    if options.nothrow and suppressible(error):
        return result
    raise error
