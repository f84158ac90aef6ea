"""CLI entry point for shellfx.

``shellfx script.py`` runs a Python script with ``sh`` and friends in its
globals; markdown files and http(s) URLs are accepted too. ``--eval`` runs
inline code and prints the value of its last expression.
"""

import asyncio
import sys
from typing import Any, List, Optional

import typer
from rich.console import Console

from .. import __version__
from ..core.config import Config, ConfigError, ConfigManager, LoggingConfig
from ..shell.errors import (
    CommandFailure,
    PipelineStageFailure,
    ShellError,
    SignalTermination,
    SpawnError,
    TimeoutFailure,
)
from ..shell.options import ProcessOptions, StdinMode, signal_number
from ..shell.shell import Shell
from ..shell.stdin import StdinForwarder
from ..util.error import format_error, format_unknown_error
from ..util.log import Log, LogFormat, LogLevel
from .loader import LoaderError, Script, build_namespace, execute, load_script

EXIT_FAILURE = 1
EXIT_LOAD_FAILURE = 66
EXIT_TIMEOUT = 124
EXIT_SPAWN_FAILURE = 127

app = typer.Typer(
    name="shellfx",
    help="Run Python scripts that call shell commands with safe quoting",
    add_completion=False,
)

console = Console(stderr=True, highlight=False)
log = Log.create({"service": "cli"})


def exit_code_for(error: BaseException) -> int:
    """Process exit code reported for an uncaught error."""
    if isinstance(error, PipelineStageFailure):
        return exit_code_for(error.cause)
    if isinstance(error, SpawnError):
        return EXIT_SPAWN_FAILURE
    if isinstance(error, TimeoutFailure):
        return EXIT_TIMEOUT
    if isinstance(error, SignalTermination):
        if error.signal:
            try:
                return 128 + signal_number(error.signal)
            except ValueError:
                return EXIT_FAILURE
        return EXIT_FAILURE
    if isinstance(error, CommandFailure):
        return error.exit_code or EXIT_FAILURE
    if isinstance(error, (LoaderError, ConfigError)):
        return EXIT_LOAD_FAILURE
    return EXIT_FAILURE


class AsyncStdin:
    """``await stdin`` reads the whole input through the stdin forwarder."""

    def __init__(self, forwarder: StdinForwarder):
        self._forwarder = forwarder
        self._task: Optional[asyncio.Future[str]] = None

    def __await__(self):
        if self._task is None:
            self._task = asyncio.ensure_future(self._read())
        return self._task.__await__()

    async def _read(self) -> str:
        data = await self._forwarder.read_all()
        return data.decode("utf-8", errors="replace")


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"shellfx {__version__}")
        raise typer.Exit()


def _bootstrap_logging(settings: LoggingConfig, level: Optional[str], print_logs: bool) -> None:
    Log.configure(
        level=LogLevel.parse(level or settings.level),
        format=LogFormat.parse(settings.format),
        console=print_logs or bool(settings.console),
        file=bool(settings.file),
    )


def _options(config: Config, *, quiet: bool, shell: Optional[str], prefix: Optional[str]) -> ProcessOptions:
    updates: dict[str, Any] = {}
    if shell is not None:
        updates["shell"] = shell
    if prefix is not None:
        updates["prefix"] = prefix
    if quiet:
        updates["quiet"] = True
        updates["verbose"] = False
    elif config.verbose is None:
        updates["verbose"] = True
    return config.model_copy(update=updates).to_options()


async def _script_and_stdin(
    location: Optional[str],
    eval_code: Optional[str],
    forwarder: Optional[StdinForwarder],
) -> tuple[Script, Any]:
    if eval_code is not None:
        script = Script(eval_code, "<eval>", "eval")
        if forwarder is not None:
            return script, AsyncStdin(forwarder)
        stdin = "" if sys.stdin.isatty() else sys.stdin.read()
        return script, stdin

    if location:
        script = await load_script(location)
        return script, AsyncStdin(forwarder or StdinForwarder())

    if not sys.stdin.isatty():
        return Script(sys.stdin.read(), "<stdin>", "stdin"), ""
    raise LoaderError("", "No script given: pass a script path, a URL or --eval")


async def _run(
    location: Optional[str],
    argv: List[str],
    eval_code: Optional[str],
    options: ProcessOptions,
) -> int:
    forwarder = StdinForwarder() if options.stdin is StdinMode.ASYNC else None
    shell = Shell(options, forwarder=forwarder)
    token = Shell.provide(shell)
    try:
        script, stdin = await _script_and_stdin(location, eval_code, forwarder)
        log.info("running script", {"origin": script.origin, "kind": script.kind})
        value = await execute(script, build_namespace(shell, script, stdin, argv))
        if script.kind == "eval" and value is not None:
            typer.echo(str(value))
        return 0
    except (ShellError, LoaderError) as e:
        log.error("script failed", {"error": e})
        console.print(format_error(e) or str(e), markup=False)
        return exit_code_for(e)
    except Exception as e:
        log.error("script raised", {"error": e})
        console.print(format_unknown_error(e), markup=False)
        return EXIT_FAILURE
    finally:
        Shell.restore(token)


@app.command()
def main(
    script: Optional[str] = typer.Argument(
        None,
        help="Script to run: a .py file, a markdown file or an http(s) URL",
    ),
    args: Optional[List[str]] = typer.Argument(
        None,
        help="Arguments exposed to the script as argv",
    ),
    eval_code: Optional[str] = typer.Option(
        None,
        "--eval",
        "-e",
        help="Evaluate code and print the value of its last expression",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        help="Do not echo commands or their output",
    ),
    shell: Optional[str] = typer.Option(
        None,
        "--shell",
        help="Shell interpreter used to run commands",
    ),
    prefix: Optional[str] = typer.Option(
        None,
        "--prefix",
        help="Code prepended to every command",
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Minimum log level: debug, info, warn or error",
    ),
    print_logs: bool = typer.Option(
        False,
        "--print-logs",
        help="Write logs to stderr",
    ),
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
):
    """Run a script, a markdown file, a URL or inline code."""
    try:
        config = ConfigManager.get()
        options = _options(config, quiet=quiet, shell=shell, prefix=prefix)
        _bootstrap_logging(config.logging, log_level, print_logs)
    except (ConfigError, ValueError) as e:
        console.print(f"Error: {e}", markup=False)
        raise typer.Exit(EXIT_LOAD_FAILURE)

    code = asyncio.run(_run(script, list(args or []), eval_code, options))
    Log.close()
    raise typer.Exit(code)


if __name__ == "__main__":
    app()
