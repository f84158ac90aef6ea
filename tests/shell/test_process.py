import asyncio
import time
from pathlib import Path

import pytest

from shellfx.shell import (
    CommandFailure,
    ProcessOptions,
    QuotingError,
    Shell,
    SignalTermination,
    SpawnError,
    StdinForwarder,
    StdinMode,
    TimeoutFailure,
)


async def _until_started(handle) -> None:
    while handle.pid is None:
        await asyncio.sleep(0.01)


@pytest.mark.anyio
async def test_embedded_quotes_are_data(sh: Shell) -> None:
    result = await sh.cmd("echo", 'f"o"o')

    assert result.stdout == 'f"o"o\n'
    assert result.exit_code == 0
    assert result.signal is None


@pytest.mark.anyio
async def test_nothrow_resolves_with_exit_code(sh: Shell) -> None:
    result = await sh("false").nothrow()

    assert result.exit_code == 1
    assert not result.ok


@pytest.mark.anyio
async def test_nonzero_exit_raises_with_output(sh: Shell) -> None:
    with pytest.raises(CommandFailure) as exc_info:
        await sh("echo partial; echo oops >&2; exit 7")

    error = exc_info.value
    assert error.exit_code == 7
    assert error.stdout == "partial\n"
    assert error.stderr == "oops\n"
    assert error.command == "echo partial; echo oops >&2; exit 7"


@pytest.mark.anyio
async def test_injection_attempt_is_echoed_literally(sh: Shell, tmp_path: Path) -> None:
    marker = tmp_path / "pwned"
    payload = f"; touch {marker}"

    result = await sh("echo {}", payload)

    assert result.stdout == payload + "\n"
    assert not marker.exists()


@pytest.mark.anyio
async def test_buffered_stdin(sh: Shell) -> None:
    proc = sh("cat")
    proc.stdin.write("hello\n")
    proc.stdin.write(b"bytes too\n")
    proc.stdin.end()

    assert await proc.text() == "hello\nbytes too"
    assert proc.options.stdin is StdinMode.BUFFERED


@pytest.mark.anyio
async def test_async_stdin_is_forwarded(sh: Shell) -> None:
    reader = asyncio.StreamReader()
    reader.feed_data(b"one\ntwo\n")
    reader.feed_eof()
    forwarding = Shell(sh.options.with_(stdin=StdinMode.ASYNC), forwarder=StdinForwarder(reader))

    assert await forwarding("cat").lines() == ["one", "two"]


@pytest.mark.anyio
async def test_environment_and_cwd(sh: Shell, tmp_path: Path) -> None:
    scoped = sh.with_options(env={"GREETING": "hi there"}, cwd=str(tmp_path))

    greeting = await scoped('printf %s "$GREETING"')
    cwd = await scoped("pwd")

    assert greeting.stdout == "hi there"
    assert Path(str(cwd)).resolve() == tmp_path.resolve()


@pytest.mark.anyio
async def test_commands_run_concurrently(sh: Shell) -> None:
    started = time.monotonic()

    await asyncio.gather(sh("sleep 1"), sh("sleep 1"), sh("sleep 1"))

    assert time.monotonic() - started < 2.5


@pytest.mark.anyio
async def test_timeout_raises_timeout_failure(sh: Shell) -> None:
    started = time.monotonic()

    with pytest.raises(TimeoutFailure) as exc_info:
        await sh("sleep 5").timeout(0.2)

    assert time.monotonic() - started < 4
    assert exc_info.value.result.timed_out
    assert exc_info.value.signal == "SIGTERM"


@pytest.mark.anyio
async def test_timeout_set_after_start(sh: Shell) -> None:
    proc = sh("sleep 5")
    await _until_started(proc)

    bounded = proc.timeout(0.2)

    assert bounded is not proc
    with pytest.raises(TimeoutFailure):
        await bounded
    assert proc.settled


@pytest.mark.anyio
async def test_timeout_reaches_background_children_holding_output(sh: Shell) -> None:
    started = time.monotonic()

    with pytest.raises(TimeoutFailure) as exc_info:
        await sh("sleep 8 & echo hi").timeout(0.3)

    assert time.monotonic() - started < 4
    assert exc_info.value.result.stdout == "hi\n"
    assert exc_info.value.result.timed_out


@pytest.mark.anyio
async def test_kill_reports_signal(sh: Shell) -> None:
    proc = sh("sleep 5")
    await _until_started(proc)

    assert proc.kill()
    with pytest.raises(SignalTermination) as exc_info:
        await proc

    assert exc_info.value.signal == "SIGTERM"
    assert exc_info.value.exit_code is None


@pytest.mark.anyio
async def test_kill_before_start_is_an_error(sh: Shell) -> None:
    proc = sh("true")

    with pytest.raises(RuntimeError):
        proc.kill()
    await proc


@pytest.mark.anyio
async def test_modifiers_after_start_derive_a_new_handle(sh: Shell) -> None:
    proc = sh("exit 3")
    await proc.wait()

    result = await proc.nothrow()

    assert result.exit_code == 3
    with pytest.raises(CommandFailure):
        await proc


@pytest.mark.anyio
async def test_missing_interpreter_is_a_spawn_error() -> None:
    broken = Shell(ProcessOptions(shell="/nonexistent/shellfx-shell", quiet=True))

    with pytest.raises(SpawnError) as exc_info:
        await broken("true").nothrow()

    assert isinstance(exc_info.value.cause, OSError)


@pytest.mark.anyio
async def test_missing_cwd_is_a_spawn_error(sh: Shell, tmp_path: Path) -> None:
    with pytest.raises(SpawnError):
        await sh.with_options(cwd=str(tmp_path / "missing"))("true")


@pytest.mark.anyio
async def test_output_is_echoed_unless_quiet(sh: Shell, capsys) -> None:  # type: ignore[no-untyped-def]
    loud = sh.with_options(quiet=False, verbose=True)

    await loud("echo shown")
    await loud("echo hidden").quiet()

    captured = capsys.readouterr()
    assert "shown" in captured.out
    assert "hidden" not in captured.out
    assert "$ echo shown" in captured.err


@pytest.mark.anyio
async def test_handles_stringify_to_trimmed_stdout(sh: Shell) -> None:
    proc = sh("echo main")
    assert "pending" in str(proc)

    await proc

    assert str(proc) == "main"
    follow = await sh("echo {}-branch", proc)
    assert follow.stdout == "main-branch\n"


@pytest.mark.anyio
async def test_unsettled_handle_cannot_be_interpolated(sh: Shell) -> None:
    proc = sh("echo later")

    with pytest.raises(QuotingError):
        sh.template("echo {}", proc)
    await proc
