"""Configuration schema — Pydantic models for shellfx config files."""

from __future__ import annotations

from typing import Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..shell.options import DEFAULT_KILL_GRACE, ProcessOptions, StdinMode, detect_shell, signal_number
from ..shell.quote import Dialect


class LoggingConfig(BaseModel):
    """Logging sinks."""
    model_config = ConfigDict(extra="forbid")

    level: Optional[str] = None
    format: Optional[Literal["kv", "json", "pretty"]] = None
    console: Optional[bool] = None
    file: Optional[bool] = None


class Config(BaseModel):
    """Process-wide defaults for spawned commands."""
    model_config = ConfigDict(extra="forbid")

    shell: Optional[str] = None
    prefix: Optional[str] = None
    dialect: Optional[str] = None
    verbose: Optional[bool] = None
    quiet: bool = False
    cwd: Optional[str] = None
    env: Dict[str, str] = Field(default_factory=dict)
    timeout: Optional[float] = None
    kill_signal: str = "SIGTERM"
    kill_grace: float = DEFAULT_KILL_GRACE
    async_stdin: bool = False
    pipeline_failure: Literal["first", "all"] = "first"
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("dialect")
    @classmethod
    def _check_dialect(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            Dialect.parse(value)
        return value

    @field_validator("kill_signal")
    @classmethod
    def _check_signal(cls, value: str) -> str:
        signal_number(value)
        return value

    def to_options(self) -> ProcessOptions:
        """Baseline ``ProcessOptions`` for every spawn."""
        shell = self.shell or detect_shell()
        dialect = Dialect.parse(self.dialect) if self.dialect else Dialect.for_shell(shell)
        prefix = self.prefix
        if prefix is None:
            prefix = "set -euo pipefail;" if dialect is Dialect.BASH else ""
        return ProcessOptions(
            shell=shell,
            prefix=prefix,
            dialect=dialect,
            cwd=self.cwd,
            env=dict(self.env),
            verbose=bool(self.verbose),
            quiet=self.quiet,
            timeout=self.timeout,
            kill_signal=self.kill_signal,
            kill_grace=self.kill_grace,
            stdin=StdinMode.ASYNC if self.async_stdin else StdinMode.INHERIT,
            pipeline_failure=self.pipeline_failure,
        )
