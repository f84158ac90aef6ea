"""shellfx - shell commands from Python with safe quoting.

Build command lines from templates whose interpolated values are always
quoted, run them as child processes and compose the results.
"""

__version__ = "0.1.0"


# Lazy imports keep `import shellfx` cheap for the CLI
def __getattr__(name: str):
    """Lazy import module components."""
    if name in (
        "Shell",
        "ProcessHandle",
        "ProcessResult",
        "ProcessOptions",
        "Pipeline",
        "Raw",
        "quote",
        "ShellError",
        "CommandFailure",
    ):
        from . import shell
        return getattr(shell, name)
    if name == "sh":
        from .shell import Shell
        return Shell.current()
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "__version__",
    "Shell",
    "ProcessHandle",
    "ProcessResult",
    "ProcessOptions",
    "Pipeline",
    "Raw",
    "quote",
    "ShellError",
    "CommandFailure",
]
