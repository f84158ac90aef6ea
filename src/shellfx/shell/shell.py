"""Entry point for running templated commands.

A ``Shell`` binds a ``ProcessOptions`` baseline (and optionally a stdin
forwarder) and turns templates into running ``ProcessHandle`` objects.
The active shell is scoped with a ContextVar; ``Shell.current()`` falls
back to a process-wide default built once from configuration.
"""

from __future__ import annotations

from contextvars import ContextVar, Token
from typing import Any, Optional, Sequence, Union

from .command import QuotedCommand, build, command_line, template
from .options import ProcessOptions
from .process import ProcessHandle
from .quote import Quotable, quote
from .runner import run
from .stdin import StdinForwarder

_shell_var: ContextVar["Shell"] = ContextVar("_shell_var")
_default: Optional["Shell"] = None


class Shell:
    """Builds quoted commands and spawns them with a bound set of options.

    Example:
        sh = Shell()
        branch = await sh("git branch --show-current")
        await sh("git log {} -n {}", branch, 5)
        count = await sh.cmd("cat", "notes.txt").pipe(sh.cmd("wc", "-l"))
    """

    def __init__(
        self,
        options: Optional[ProcessOptions] = None,
        *,
        forwarder: Optional[StdinForwarder] = None,
    ):
        self.options = options or ProcessOptions()
        self.forwarder = forwarder

    def __repr__(self) -> str:
        return f"Shell(shell={self.options.shell!r}, dialect={self.options.quoting.value!r})"

    # -- ContextVar plumbing --

    @classmethod
    def current(cls) -> "Shell":
        try:
            return _shell_var.get()
        except LookupError:
            return cls.default()

    @classmethod
    def provide(cls, shell: "Shell") -> Token["Shell"]:
        return _shell_var.set(shell)

    @classmethod
    def restore(cls, token: Token["Shell"]) -> None:
        _shell_var.reset(token)

    @classmethod
    def default(cls) -> "Shell":
        """Process-wide shell configured from ``ConfigManager`` on first use."""
        global _default
        if _default is None:
            from ..core.config import ConfigManager

            _default = cls(ConfigManager.get().to_options())
        return _default

    @classmethod
    def reset_default(cls) -> None:
        global _default
        _default = None

    # -- Command construction --

    def with_options(self, **overrides: Any) -> "Shell":
        """Shell sharing this one's forwarder with ``overrides`` applied."""
        return Shell(self.options.with_(**overrides), forwarder=self.forwarder)

    def quote(self, value: Quotable) -> str:
        return quote(value, self.options.quoting)

    def template(self, fmt: str, *values: Any) -> QuotedCommand:
        return template(fmt, *values, dialect=self.options.quoting)

    def build(self, fragments: Sequence[str], values: Sequence[Any]) -> QuotedCommand:
        return build(fragments, values, self.options.quoting)

    # -- Execution --

    def run(self, command: Union[QuotedCommand, str]) -> ProcessHandle:
        """Spawn an already quoted command line."""
        return run(command, self.options, forwarder=self.forwarder)

    def __call__(self, fmt: str, *values: Any) -> ProcessHandle:
        """Spawn a ``{}`` template with every value quoted."""
        return self.run(self.template(fmt, *values))

    def cmd(self, program: str, *args: Any) -> ProcessHandle:
        """Spawn ``program`` followed by each quoted argument."""
        return self.run(command_line(program, *args, dialect=self.options.quoting))

    def spawn(self, fragments: Sequence[str], values: Sequence[Any]) -> ProcessHandle:
        """Spawn a command built from literal fragments and interpolated values."""
        return self.run(self.build(fragments, values))
