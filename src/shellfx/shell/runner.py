"""Spawn quoted commands under a shell interpreter.

``run`` never blocks and never raises for spawn problems: it returns a
``ProcessHandle`` immediately and starts the process on the next iteration
of the running event loop. A failed spawn settles the handle with the OS
error instead.
"""

from __future__ import annotations

import asyncio
import os
import sys
import time
from typing import Optional, Union

from rich.console import Console
from rich.text import Text

from ..util.log import Log
from .command import QuotedCommand
from .errors import StdinBusyError
from .options import ProcessOptions, StdinMode, signal_name
from .process import PROCESS_GROUPS, ProcessHandle, ProcessStdin, _Execution
from .result import ProcessResult
from .stdin import StdinForwarder

log = Log.create({"service": "shell.runner"})

CHUNK_SIZE = 64 * 1024

_console = Console(stderr=True, highlight=False, soft_wrap=True)


def run(
    command: Union[QuotedCommand, str],
    options: Optional[ProcessOptions] = None,
    *,
    forwarder: Optional[StdinForwarder] = None,
) -> ProcessHandle:
    """Schedule ``command`` and return its handle.

    Must be called from a coroutine: the process is supervised by a task on
    the running loop. A plain ``str`` is taken as already quoted.
    """
    options = options or ProcessOptions()
    if not isinstance(command, QuotedCommand):
        command = QuotedCommand(command, options.quoting)
    handle = ProcessHandle(command, options, forwarder=forwarder)
    handle._execution.task = asyncio.ensure_future(_supervise(handle))
    return handle


def _echo(name: str, chunk: bytes) -> None:
    stream = getattr(sys, name)
    buffer = getattr(stream, "buffer", None)
    if buffer is None:
        stream.write(chunk.decode("utf-8", errors="replace"))
        stream.flush()
        return
    stream.flush()
    buffer.write(chunk)
    buffer.flush()


async def _output_pipe() -> tuple[int, asyncio.StreamReader, asyncio.ReadTransport]:
    """Pipe for one output stream of the child.

    Returns the write end to hand to the child, plus a reader and the read
    transport. Closing the transport early gives writers SIGPIPE.
    """
    loop = asyncio.get_running_loop()
    read_fd, write_fd = os.pipe()
    pipe = os.fdopen(read_fd, "rb", buffering=0)
    reader = asyncio.StreamReader()
    try:
        transport, _ = await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), pipe)
    except BaseException:
        pipe.close()
        os.close(write_fd)
        raise
    return write_fd, reader, transport


async def _pump(
    ex: _Execution,
    stream: asyncio.StreamReader,
    name: str,
    transport: Optional[asyncio.ReadTransport] = None,
) -> None:
    buffer = ex.stdout if name == "stdout" else ex.stderr
    try:
        while True:
            chunk = await stream.read(CHUNK_SIZE)
            if not chunk:
                break
            if name == "stdout" and ex.output_discarded:
                continue
            buffer.extend(chunk)
            if not ex.muted:
                _echo(name, chunk)
            if name == "stdout" and ex.sinks:
                for sink in list(ex.sinks):
                    await sink.feed(chunk)
                if all(sink.broken for sink in ex.sinks):
                    log.info("every pipe reader exited, closing stdout", {"pid": ex.pid})
                    ex.discard_output()
                    if transport is not None:
                        break
    finally:
        if transport is not None:
            transport.close()
        if name == "stdout":
            ex.close_stdout()


async def _collect(ex: _Execution, readers: list[asyncio.Future[None]], grace: float) -> None:
    gathered = asyncio.gather(*readers)
    killed = asyncio.ensure_future(ex.killed.wait())
    try:
        await asyncio.wait({gathered, killed}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        killed.cancel()
    if gathered.done():
        await gathered
        return
    # a killed shell may leave grandchildren holding the pipes open
    _, pending = await asyncio.wait(readers, timeout=grace)
    for task in pending:
        task.cancel()
    if pending:
        log.warn("output pipes still open after kill", {"pid": ex.pid})
    await asyncio.gather(gathered, return_exceptions=True)


async def _supervise(handle: ProcessHandle) -> None:
    ex = handle._execution
    try:
        await _spawn_and_wait(handle)
    except asyncio.CancelledError:
        ex.abort()
        if not ex.done.done():
            ex.done.cancel()
        raise
    except Exception as e:
        log.error("process supervision failed", {"command": str(ex.command), "error": e})
        if not ex.done.done():
            ex.done.set_exception(e)


async def _spawn_and_wait(handle: ProcessHandle) -> None:
    ex = handle._execution
    options = handle.options
    command = handle.command

    ex.options = options
    ex.started = True
    ex.muted = ex.muted or options.quiet
    ex.start_time = time.monotonic()

    stdin_mode = StdinMode.BUFFERED if ex.stdin is not None else options.stdin
    if options.verbose:
        _console.print(Text(f"$ {command}", style="bold"))

    log.info("spawning", {"command": str(command), "shell": options.shell, "cwd": options.cwd})
    outputs: dict[str, tuple[int, asyncio.StreamReader, asyncio.ReadTransport]] = {}
    try:
        if PROCESS_GROUPS:
            outputs["stdout"] = await _output_pipe()
            outputs["stderr"] = await _output_pipe()
        proc = await asyncio.create_subprocess_exec(
            *options.argv(command),
            stdin=None if stdin_mode is StdinMode.INHERIT else asyncio.subprocess.PIPE,
            stdout=outputs["stdout"][0] if outputs else asyncio.subprocess.PIPE,
            stderr=outputs["stderr"][0] if outputs else asyncio.subprocess.PIPE,
            cwd=options.cwd,
            env=options.environment(),
            start_new_session=PROCESS_GROUPS,
        )
    except OSError as e:
        for _, _, transport in outputs.values():
            transport.close()
        log.error("spawn failed", {"command": str(command), "shell": options.shell, "error": e})
        ex.close_stdout()
        ex.settle(ProcessResult(
            command=str(command),
            duration=time.monotonic() - ex.start_time,
            error=e,
        ))
        return
    finally:
        # the child holds its own copies of the write ends
        for write_fd, _, _ in outputs.values():
            os.close(write_fd)

    ex.process = proc
    if stdin_mode is StdinMode.BUFFERED:
        if ex.stdin is None:
            ex.stdin = ProcessStdin()
        ex.stdin._attach(proc.stdin)

    exit_task = asyncio.ensure_future(proc.wait())
    forward_task = None
    if stdin_mode is StdinMode.ASYNC and proc.stdin is not None:
        forwarder = ex.forwarder or StdinForwarder.default()
        forward_task = asyncio.ensure_future(forwarder.forward(proc.stdin, until=exit_task))

    if outputs:
        ex.output_transport = outputs["stdout"][2]
        readers = [
            asyncio.ensure_future(_pump(ex, reader, name, transport))
            for name, (_, reader, transport) in outputs.items()
        ]
    else:
        assert proc.stdout is not None and proc.stderr is not None
        readers = [
            asyncio.ensure_future(_pump(ex, proc.stdout, "stdout")),
            asyncio.ensure_future(_pump(ex, proc.stderr, "stderr")),
        ]
    if options.timeout is not None:
        ex.arm_timeout(options.timeout, options.kill_signal, options.kill_grace)

    returncode = await exit_task
    await _collect(ex, readers, options.kill_grace)
    if forward_task is not None:
        try:
            await forward_task
        except StdinBusyError as e:
            log.warn("stdin forwarding rejected", {"pid": proc.pid, "error": e})

    exit_code: Optional[int] = returncode
    signal: Optional[str] = None
    if returncode < 0:
        exit_code = None
        signal = signal_name(-returncode)
    elif ex.kill_reason is not None:
        signal = ex.signal_sent

    result = ProcessResult(
        command=str(command),
        stdout_bytes=bytes(ex.stdout),
        stderr_bytes=bytes(ex.stderr),
        exit_code=exit_code,
        signal=signal,
        duration=time.monotonic() - ex.start_time,
        pid=proc.pid,
        timed_out=ex.kill_reason == "timeout",
    )
    log.info("settled", {
        "command": str(command),
        "pid": proc.pid,
        "exit": exit_code,
        "signal": signal,
        "duration": round(result.duration, 3),
    })
    ex.settle(result)
