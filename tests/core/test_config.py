import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from shellfx.core.config import Config, ConfigError, ConfigManager
from shellfx.shell import Dialect, Shell, StdinMode


def _load(directory: Path, environ: dict[str, str] | None = None) -> Config:
    token = ConfigManager.provide(ConfigManager(environ=environ or {}))
    try:
        return ConfigManager.load(str(directory))
    finally:
        ConfigManager.restore(token)


def test_config_defaults() -> None:
    config = Config.model_validate({})

    assert config.shell is None
    assert config.verbose is None
    assert config.timeout is None
    assert config.kill_signal == "SIGTERM"
    assert config.pipeline_failure == "first"
    assert config.logging.level is None


def test_config_forbids_unknown_fields() -> None:
    with pytest.raises(ValidationError):
        Config.model_validate({"unknown": 1})

    with pytest.raises(ValidationError):
        Config.model_validate({"logging": {"unknown": True}})


def test_config_validates_dialect_and_signal() -> None:
    with pytest.raises(ValidationError):
        Config.model_validate({"dialect": "fish"})

    with pytest.raises(ValidationError):
        Config.model_validate({"kill_signal": "SIGNOPE"})


def test_bash_gets_strict_prefix_by_default() -> None:
    options = Config(shell="/bin/bash").to_options()

    assert options.prefix == "set -euo pipefail;"
    assert options.quoting is Dialect.BASH


def test_posix_shell_gets_no_prefix() -> None:
    options = Config(shell="/bin/sh", async_stdin=True, verbose=None).to_options()

    assert options.prefix == ""
    assert options.quoting is Dialect.POSIX
    assert options.stdin is StdinMode.ASYNC
    assert options.verbose is False


def test_explicit_prefix_and_dialect_win() -> None:
    options = Config(shell="/bin/bash", prefix="", dialect="posix").to_options()

    assert options.prefix == ""
    assert options.quoting is Dialect.POSIX


def test_project_files_merge_root_first(tmp_path: Path) -> None:
    project = tmp_path / "project"
    nested = project / "nested"
    nested.mkdir(parents=True)
    (project / "shellfx.jsonc").write_text(
        '{\n  // shared defaults\n  "shell": "/bin/sh",\n  "timeout": 10,\n  "env": {"A": "1"}\n}\n',
        encoding="utf-8",
    )
    (nested / "shellfx.json").write_text(json.dumps({"timeout": 3, "env": {"B": "2"}}), encoding="utf-8")

    config = _load(nested)

    assert config.shell == "/bin/sh"
    assert config.timeout == 3
    assert config.env == {"A": "1", "B": "2"}


def test_global_config_has_lowest_precedence(tmp_path: Path) -> None:
    global_dir = tmp_path / "config"
    global_dir.mkdir()
    (global_dir / "shellfx.json").write_text(json.dumps({"prefix": "global;", "quiet": True}), encoding="utf-8")
    project = tmp_path / "project"
    project.mkdir()
    (project / "shellfx.json").write_text(json.dumps({"prefix": "project;"}), encoding="utf-8")

    token = ConfigManager.provide(ConfigManager(environ={}))
    try:
        config = ConfigManager.load(str(project))
        sources = ConfigManager.sources()
    finally:
        ConfigManager.restore(token)

    assert config.prefix == "project;"
    assert config.quiet is True
    assert sources == [str(global_dir / "shellfx.json"), str(project / "shellfx.json")]


def test_env_placeholders_are_substituted(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SHELLFX_TEST_CWD", str(tmp_path))
    (tmp_path / "shellfx.json").write_text('{"cwd": "{env:SHELLFX_TEST_CWD}"}', encoding="utf-8")

    assert _load(tmp_path).cwd == str(tmp_path)


def test_inline_content_and_env_vars_override_files(tmp_path: Path) -> None:
    (tmp_path / "shellfx.json").write_text(json.dumps({"shell": "/bin/zsh", "timeout": 1}), encoding="utf-8")

    config = _load(tmp_path, {
        "SHELLFX_CONFIG_CONTENT": json.dumps({"shell": "/bin/ksh", "kill_grace": 2}),
        "SHELLFX_SHELL": "/bin/sh",
        "SHELLFX_TIMEOUT": "2.5",
        "SHELLFX_VERBOSE": "yes",
        "SHELLFX_ASYNC_STDIN": "0",
        "SHELLFX_LOG_LEVEL": "debug",
    })

    assert config.shell == "/bin/sh"
    assert config.timeout == 2.5
    assert config.kill_grace == 2
    assert config.verbose is True
    assert config.async_stdin is False
    assert config.logging.level == "debug"


@pytest.mark.parametrize(
    "environ",
    [
        {"SHELLFX_QUIET": "maybe"},
        {"SHELLFX_TIMEOUT": "soon"},
        {"SHELLFX_CONFIG_CONTENT": "{not json"},
        {"SHELLFX_CONFIG_CONTENT": "[1, 2]"},
        {"SHELLFX_DIALECT": "fish"},
    ],
)
def test_invalid_settings_raise_config_error(tmp_path: Path, environ: dict[str, str]) -> None:
    with pytest.raises(ConfigError):
        _load(tmp_path, environ)


def test_unreadable_file_is_skipped(tmp_path: Path) -> None:
    (tmp_path / "shellfx.json").write_text("{ broken", encoding="utf-8")

    assert _load(tmp_path).shell is None


def test_load_is_cached_until_reset(tmp_path: Path) -> None:
    token = ConfigManager.provide(ConfigManager(environ={"SHELLFX_SHELL": "/bin/sh"}))
    try:
        first = ConfigManager.load(str(tmp_path))
        assert ConfigManager.get() is first
        ConfigManager.reset()
        assert ConfigManager.get() is not first
    finally:
        ConfigManager.restore(token)


def test_default_shell_is_built_from_config(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SHELLFX_SHELL", "/bin/sh")
    monkeypatch.setenv("SHELLFX_PREFIX", "")

    shell = Shell.current()

    assert shell.options.shell == "/bin/sh"
    assert shell.options.prefix == ""
    assert Shell.current() is shell
