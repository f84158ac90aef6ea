"""Error formatting utilities.

Turns engine and loader errors into the messages printed by the CLI.
"""

import json
import traceback
from typing import Any

from ..shell.errors import PipelineStageFailure, ShellError, SpawnError


def format_error(error: Any) -> str | None:
    """Format known application errors into user-friendly messages.

    Returns None if the error type is not recognized, allowing
    fallback to format_unknown_error.
    """
    if isinstance(error, PipelineStageFailure):
        lines = [f"Error: pipeline stage {error.stage} failed"]
        for stage, cause in error.failures:
            lines.append(f"  [{stage}] {cause}")
        return "\n".join(lines)
    if isinstance(error, SpawnError):
        return f"Error: could not start {error.command!r}: {error.cause}"
    if isinstance(error, ShellError):
        return f"Error: {error}"

    from ..cli.loader import LoaderError

    if isinstance(error, LoaderError):
        return f"Error: {error}"
    return None


def format_unknown_error(error: Any) -> str:
    """Format any error into a string representation.

    Handles Exception objects, serializable objects, and primitives.
    """
    if isinstance(error, BaseException):
        if error.__traceback__:
            return "".join(traceback.format_exception(type(error), error, error.__traceback__))
        return f"{error.__class__.__name__}: {error}"

    if isinstance(error, (dict, list)):
        try:
            return json.dumps(error, indent=2)
        except (TypeError, ValueError):
            return "Unexpected error (unserializable)"

    return str(error)
