"""Awaitable handles over child processes.

A ``ProcessHandle`` is returned as soon as a command is scheduled. Awaiting
it yields the ``ProcessResult`` or raises the classified failure. Chaining
calls made before the process starts reconfigure the handle in place; after
the start they return a derived handle that shares the same process.
"""

from __future__ import annotations

import asyncio
import os
import signal as signals
import time
from typing import TYPE_CHECKING, Any, Generator, Optional, Union

from ..util.log import Log
from .classify import check
from .options import ProcessOptions, StdinMode, signal_number
from .result import ProcessResult

if TYPE_CHECKING:
    from .command import QuotedCommand
    from .pipeline import Pipeline
    from .stdin import StdinForwarder

log = Log.create({"service": "shell.process"})

# children run in their own process group so signals reach what the shell started
PROCESS_GROUPS = os.name == "posix"

_SIGKILL = getattr(signals, "SIGKILL", signals.SIGTERM)


class ProcessStdin:
    """Writable stdin of a child process.

    Data written before the process is spawned is queued and flushed once
    the pipe exists. ``end`` closes the pipe so the child sees EOF.
    """

    def __init__(self) -> None:
        self._queue: list[bytes] = []
        self._writer: Optional[asyncio.StreamWriter] = None
        self._closed = False
        self._broken = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def broken(self) -> bool:
        """True once the reading side of the pipe has gone away."""
        return self._broken

    def write(self, data: Union[str, bytes]) -> None:
        if self._closed:
            raise ValueError("write to closed stdin")
        chunk = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        if self._broken:
            return
        if self._writer is None:
            self._queue.append(chunk)
        else:
            self._writer.write(chunk)

    def end(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._writer is not None:
            self._writer.close()

    close = end

    async def drain(self) -> None:
        if self._writer is None or self._broken:
            return
        try:
            await self._writer.drain()
        except (BrokenPipeError, ConnectionResetError):
            # the reader went away, e.g. `head` after enough lines
            self._broken = True
            return
        if self._writer.is_closing() and not self._closed:
            self._broken = True

    async def feed(self, chunk: bytes) -> None:
        """Write ``chunk`` and wait for the pipe buffer to drain."""
        if self._closed or self._broken:
            return
        self.write(chunk)
        await self.drain()

    def _attach(self, writer: Optional[asyncio.StreamWriter]) -> None:
        if writer is None:
            return
        self._writer = writer
        if self._queue:
            writer.write(b"".join(self._queue))
            self._queue.clear()
        if self._closed:
            writer.close()


class _Execution:
    """State of one spawned process, shared by a handle and its derivations."""

    def __init__(self, command: "QuotedCommand", forwarder: Optional["StdinForwarder"]):
        self.loop = asyncio.get_running_loop()
        self.command = command
        self.forwarder = forwarder
        self.options: Optional[ProcessOptions] = None
        self.done: asyncio.Future[ProcessResult] = self.loop.create_future()
        self.task: Optional[asyncio.Future[None]] = None
        self.process: Optional[asyncio.subprocess.Process] = None
        self.started = False
        self.muted = False
        self.start_time = 0.0
        self.settled_at: Optional[float] = None
        self.stdout = bytearray()
        self.stderr = bytearray()
        self.stdout_closed = False
        self.sinks: list[ProcessStdin] = []
        self.stdin: Optional[ProcessStdin] = None
        self.kill_reason: Optional[str] = None
        self.signal_sent: Optional[str] = None
        self.killed = asyncio.Event()
        self.output_transport: Optional[asyncio.ReadTransport] = None
        self.output_discarded = False
        self._timer: Optional[asyncio.TimerHandle] = None
        self._escalation: Optional[asyncio.TimerHandle] = None

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    def add_sink(self, sink: ProcessStdin) -> None:
        """Relay stdout into ``sink``, replaying what was captured so far."""
        if self.stdout:
            sink.write(bytes(self.stdout))
        if self.stdout_closed:
            sink.end()
        else:
            self.sinks.append(sink)

    def close_stdout(self) -> None:
        self.stdout_closed = True
        for sink in self.sinks:
            sink.end()
        self.sinks.clear()

    def settle(self, result: ProcessResult) -> None:
        if self.done.done():
            return
        for timer in (self._timer, self._escalation):
            if timer is not None:
                timer.cancel()
        self.settled_at = time.monotonic()
        self.done.set_result(result)

    def arm_timeout(self, seconds: float, signal: str, grace: float) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = self.loop.call_later(seconds, self._expire, signal, grace)

    def _expire(self, signal: str, grace: float) -> None:
        self._timer = None
        if self.done.done():
            return
        log.warn("timeout expired", {"command": str(self.command), "pid": self.pid, "signal": signal})
        if not self.send_signal(signal, grace, reason="timeout"):
            # nothing left to signal, but the output pipes are still open
            self._mark("timeout", signal)

    def _mark(self, reason: str, signal: str) -> None:
        if self.kill_reason is None:
            self.kill_reason = reason
            self.signal_sent = signal
        self.killed.set()

    def _deliver(self, number: int) -> bool:
        """Send ``number`` to the process group, or to the shell alone where
        there are no process groups."""
        proc = self.process
        if proc is None:
            return False
        try:
            if PROCESS_GROUPS:
                os.killpg(proc.pid, number)
            elif proc.returncode is None:
                proc.send_signal(number)
            else:
                return False
        except (ProcessLookupError, PermissionError):
            return False
        return True

    def send_signal(self, signal: str, grace: float, *, reason: str) -> bool:
        """Signal the process and schedule a SIGKILL after ``grace`` seconds.

        Children the shell started share its process group and receive the
        signal too, even after the shell itself has exited.
        """
        if self.process is None or self.done.done():
            return False
        if not self._deliver(signal_number(signal)):
            return False
        self._mark(reason, signal)
        log.info("signal sent", {"pid": self.pid, "signal": signal, "reason": reason})
        if self._escalation is None:
            self._escalation = self.loop.call_later(grace, self._escalate)
        return True

    def _escalate(self) -> None:
        self._escalation = None
        if self.done.done():
            return
        if self._deliver(_SIGKILL):
            log.warn("escalated to SIGKILL", {"pid": self.pid})

    def abort(self) -> None:
        """Kill whatever is left of the process group right away."""
        if not self.done.done():
            self._deliver(_SIGKILL)

    def discard_output(self) -> None:
        """Stop reading stdout. Writers still attached get SIGPIPE."""
        self.output_discarded = True
        if self.output_transport is not None:
            self.output_transport.close()


class BaseHandle:
    """Awaitable surface shared by single processes and pipelines."""

    def __await__(self) -> Generator[Any, None, ProcessResult]:
        return self._resolve().__await__()

    async def _resolve(self) -> ProcessResult:
        raise NotImplementedError

    async def wait(self) -> ProcessResult:
        """Wait for settlement and return the result without raising."""
        raise NotImplementedError

    @property
    def settled(self) -> bool:
        raise NotImplementedError

    def result_nowait(self) -> ProcessResult:
        raise NotImplementedError

    async def text(self) -> str:
        """Stdout without its trailing newline."""
        return str(await self)

    async def lines(self) -> list[str]:
        return (await self).lines()

    def pipe(self, target: Any) -> "Pipeline":
        """Feed this handle's stdout into ``target``."""
        from .pipeline import pipe

        return pipe(self, target)

    def __or__(self, target: Any) -> "Pipeline":
        return self.pipe(target)

    def __str__(self) -> str:
        if self.settled:
            return str(self.result_nowait())
        return repr(self)


class ProcessHandle(BaseHandle):
    """Handle of one child process running a quoted command."""

    def __init__(
        self,
        command: "QuotedCommand",
        options: ProcessOptions,
        *,
        forwarder: Optional["StdinForwarder"] = None,
        execution: Optional[_Execution] = None,
    ):
        self._execution = execution or _Execution(command, forwarder)
        self._options = options

    def __repr__(self) -> str:
        state = "settled" if self.settled else ("running" if self.started else "pending")
        return f"<ProcessHandle {state} pid={self.pid} command={str(self.command)!r}>"

    @property
    def command(self) -> "QuotedCommand":
        return self._execution.command

    @property
    def options(self) -> ProcessOptions:
        return self._options

    @property
    def pid(self) -> Optional[int]:
        return self._execution.pid

    @property
    def started(self) -> bool:
        return self._execution.started

    @property
    def settled(self) -> bool:
        return self._execution.done.done()

    @property
    def stdin(self) -> ProcessStdin:
        """Writable stdin; using it before the start switches to buffered input."""
        ex = self._execution
        if ex.stdin is None:
            if ex.started:
                raise RuntimeError("process was started without a writable stdin")
            self._options = self._options.with_(stdin=StdinMode.BUFFERED)
            ex.stdin = ProcessStdin()
        return ex.stdin

    def _derive(self, **overrides: Any) -> "ProcessHandle":
        options = self._options.with_(**overrides)
        if not self._execution.started:
            self._options = options
            return self
        return ProcessHandle(self.command, options, execution=self._execution)

    def quiet(self) -> "ProcessHandle":
        """Do not echo this process's output to the parent's streams."""
        self._execution.muted = True
        return self._derive(quiet=True)

    def nothrow(self) -> "ProcessHandle":
        """Resolve to the result instead of raising on nonzero exit or signal."""
        return self._derive(nothrow=True)

    def timeout(self, seconds: float, signal: Optional[str] = None) -> "ProcessHandle":
        """Send ``signal`` if the process has not settled after ``seconds``."""
        overrides: dict[str, Any] = {"timeout": seconds}
        if signal is not None:
            overrides["kill_signal"] = signal
        handle = self._derive(**overrides)
        ex = self._execution
        if ex.started and not self.settled:
            ex.arm_timeout(seconds, handle.options.kill_signal, handle.options.kill_grace)
        return handle

    def kill(self, signal: Optional[str] = None) -> bool:
        """Send ``signal`` (default: the configured kill signal) to the process."""
        if not self.started:
            raise RuntimeError("cannot kill a process that has not started")
        name = signal or self._options.kill_signal
        signal_number(name)
        return self._execution.send_signal(name, self._options.kill_grace, reason="signal")

    async def wait(self) -> ProcessResult:
        return await asyncio.shield(self._execution.done)

    async def _resolve(self) -> ProcessResult:
        return check(await self.wait(), self._options)

    def result_nowait(self) -> ProcessResult:
        if not self.settled:
            raise RuntimeError("process has not settled")
        return self._execution.done.result()
