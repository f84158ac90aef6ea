"""Connect process handles stdout-to-stdin.

``a.pipe(b)`` relays every stdout chunk of ``a`` into the stdin of ``b``
as it arrives, waiting for ``b``'s pipe to drain so a slow sink throttles a
fast source. The resulting ``Pipeline`` settles with the last stage's
result; failures are attributed to the stage that failed first, or to all
failing stages under the ``all`` policy.
"""

from __future__ import annotations

import asyncio
import signal as signals
from typing import Any, Optional, Sequence, Union

from ..util.log import Log
from .classify import classify, suppressible
from .command import QuotedCommand
from .errors import PipelineStageFailure, ShellError
from .options import PipelineFailure, StdinMode
from .process import BaseHandle, ProcessHandle, ProcessStdin
from .result import ProcessResult

log = Log.create({"service": "shell.pipeline"})

PipeTarget = Union[BaseHandle, QuotedCommand, str]

_SIGPIPE = getattr(signals, "SIGPIPE", None)


def _reader_gone(stage: ProcessHandle, result: ProcessResult) -> bool:
    """True when ``stage`` died writing to a pipe that nobody reads any more."""
    if _SIGPIPE is None or not stage._execution.output_discarded:
        return False
    return result.signal == "SIGPIPE" or result.exit_code == 128 + _SIGPIPE


def _connect(source: ProcessHandle, sink: ProcessHandle) -> None:
    writer = sink.stdin
    source._execution.add_sink(writer)
    log.debug("piped", {"source": str(source.command), "sink": str(sink.command)})


def _sink_stages(target: PipeTarget, source: ProcessHandle) -> list[ProcessHandle]:
    if isinstance(target, ProcessHandle):
        return [target]
    if isinstance(target, Pipeline):
        return list(target.stages)
    if isinstance(target, str):
        from .runner import run

        options = source.options.with_(stdin=StdinMode.BUFFERED, nothrow=False, timeout=None)
        return [run(target, options, forwarder=source._execution.forwarder)]
    raise TypeError(f"cannot pipe into {type(target).__name__}")


def _join(stages: Sequence[ProcessHandle], target: PipeTarget) -> list[ProcessHandle]:
    last = stages[-1]
    sinks = _sink_stages(target, last)
    if any(sink is stage for sink in sinks for stage in stages):
        raise ValueError("a process cannot be piped into its own pipeline")
    _connect(last, sinks[0])
    return [*stages, *sinks]


def pipe(source: BaseHandle, target: PipeTarget) -> "Pipeline":
    """Connect ``source`` stdout to ``target`` stdin and return the joined handle."""
    if isinstance(source, Pipeline):
        return source.pipe(target)
    if not isinstance(source, ProcessHandle):
        raise TypeError(f"cannot pipe from {type(source).__name__}")
    return Pipeline(_join([source], target))


class Pipeline(BaseHandle):
    """A fixed sequence of stages behaving as one handle."""

    def __init__(
        self,
        stages: Sequence[ProcessHandle],
        *,
        policy: Optional[PipelineFailure] = None,
        nothrow: bool = False,
    ):
        if len(stages) < 2:
            raise ValueError("a pipeline needs at least two stages")
        self.stages: tuple[ProcessHandle, ...] = tuple(stages)
        self.policy: PipelineFailure = policy or self.stages[0].options.pipeline_failure
        self._nothrow = nothrow

    def __repr__(self) -> str:
        commands = " | ".join(str(stage.command) for stage in self.stages)
        return f"<Pipeline {commands!r}>"

    @property
    def stdin(self) -> ProcessStdin:
        return self.stages[0].stdin

    @property
    def pids(self) -> list[Optional[int]]:
        return [stage.pid for stage in self.stages]

    @property
    def settled(self) -> bool:
        return all(stage.settled for stage in self.stages)

    def _derive(self, **changes: Any) -> "Pipeline":
        params = {"policy": self.policy, "nothrow": self._nothrow, **changes}
        return Pipeline(self.stages, **params)

    def pipe(self, target: PipeTarget) -> "Pipeline":
        return Pipeline(_join(self.stages, target), policy=self.policy, nothrow=self._nothrow)

    def quiet(self) -> "Pipeline":
        for stage in self.stages:
            stage.quiet()
        return self

    def nothrow(self) -> "Pipeline":
        return self._derive(nothrow=True)

    def failure_policy(self, policy: PipelineFailure) -> "Pipeline":
        return self._derive(policy=policy)

    def timeout(self, seconds: float, signal: Optional[str] = None) -> "Pipeline":
        for stage in self.stages:
            stage.timeout(seconds, signal)
        return self

    def kill(self, signal: Optional[str] = None) -> bool:
        sent = False
        for stage in self.stages:
            if stage.started and not stage.settled:
                sent = stage.kill(signal) or sent
        return sent

    async def _settle_all(self) -> list[ProcessResult]:
        return list(await asyncio.gather(*(stage.wait() for stage in self.stages)))

    async def wait(self) -> ProcessResult:
        return (await self._settle_all())[-1]

    def result_nowait(self) -> ProcessResult:
        return self.stages[-1].result_nowait()

    def _failures(self, results: list[ProcessResult]) -> list[tuple[int, ShellError]]:
        failures = []
        for index, (stage, result) in enumerate(zip(self.stages, results)):
            if _reader_gone(stage, result):
                continue
            error = classify(result, stage.options)
            if error is None:
                continue
            if stage.options.nothrow and suppressible(error):
                continue
            failures.append((index, error))
        # attribute to the stage that settled first
        failures.sort(key=lambda item: (self.stages[item[0]]._execution.settled_at or 0.0, item[0]))
        return failures

    async def _resolve(self) -> ProcessResult:
        results = await self._settle_all()
        failures = self._failures(results)
        if self._nothrow:
            failures = [item for item in failures if not suppressible(item[1])]
        if failures:
            stage, cause = failures[0]
            attributed = failures if self.policy == "all" else [failures[0]]
            raise PipelineStageFailure(stage, cause, attributed)
        return results[-1]
