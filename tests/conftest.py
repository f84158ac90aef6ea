from collections.abc import Iterator

import pytest

from shellfx.core.config import ConfigManager
from shellfx.shell import ProcessOptions, Shell
from shellfx.util.log import Log


@pytest.fixture(autouse=True)
def config_context(monkeypatch: pytest.MonkeyPatch, tmp_path) -> Iterator[None]:
    monkeypatch.setenv("SHELLFX_CONFIG_DIR", str(tmp_path / "config"))
    for name in ("SHELLFX_CONFIG_CONTENT", "SHELLFX_SHELL", "SHELLFX_PREFIX", "SHELLFX_VERBOSE", "SHELLFX_QUIET"):
        monkeypatch.delenv(name, raising=False)
    token = ConfigManager.provide(ConfigManager())
    try:
        yield
    finally:
        ConfigManager.restore(token)
        Shell.reset_default()


@pytest.fixture(autouse=True)
def _log_teardown() -> Iterator[None]:
    yield
    Log.reset()


@pytest.fixture
def sh() -> Shell:
    """A quiet POSIX shell without a prefix."""
    return Shell(ProcessOptions(shell="/bin/sh", prefix="", quiet=True, kill_grace=0.5))


@pytest.fixture
def anyio_backend() -> str:
    """The library is built on asyncio; run async tests on that backend only."""
    return "asyncio"
