from __future__ import annotations

import json
from pathlib import Path

import pytest

from shellfx.core.global_paths import GlobalPath
from shellfx.util.log import KEEP_LOG_FILES, Log, LogFormat, LogLevel


def test_loggers_are_silent_until_configured(capsys) -> None:  # type: ignore[no-untyped-def]
    Log.create({"service": "test.silent"}).error("nobody hears this")

    assert capsys.readouterr().err == ""


def test_log_writes_console_and_file(monkeypatch, tmp_path: Path, capsys) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setattr(GlobalPath, "log", classmethod(lambda cls: str(tmp_path)))
    Log.configure(level=LogLevel.INFO, format=LogFormat.KV, console=True, file=True, dev=True)

    log = Log.create({"service": "test.log"})
    log.info("spawned", {"command": "echo hi", "pid": 7})
    Log.close()

    stderr = capsys.readouterr().err
    text = (tmp_path / "dev.log").read_text(encoding="utf-8")

    assert "msg=spawned" in stderr
    assert "service=test.log" in stderr
    assert 'command="echo hi"' in stderr
    assert "pid=7" in text
    assert Log.file() == str(tmp_path / "dev.log")


def test_log_supports_json_format(monkeypatch, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setattr(GlobalPath, "log", classmethod(lambda cls: str(tmp_path)))
    Log.configure(level=LogLevel.INFO, format=LogFormat.JSON, console=False, file=True, dev=True)

    log = Log.create({"service": "test.json"})
    log.warn("pipeline stage failed", {"meta": {"stage": 1}, "error": ValueError("bad")})
    Log.close()

    line = (tmp_path / "dev.log").read_text(encoding="utf-8").strip()
    payload = json.loads(line)

    assert payload["level"] == "warn"
    assert payload["msg"] == "pipeline stage failed"
    assert payload["service"] == "test.json"
    assert payload["meta"] == {"stage": 1}
    assert payload["error"] == "ValueError: bad"


def test_level_filters_lower_messages(capsys) -> None:  # type: ignore[no-untyped-def]
    Log.configure(level=LogLevel.WARN, console=True)

    log = Log.create({"service": "test.level"})
    log.info("hidden")
    log.error("shown")

    stderr = capsys.readouterr().err
    assert "hidden" not in stderr
    assert "msg=shown" in stderr


def test_loggers_are_cached_by_service() -> None:
    assert Log.create({"service": "test.cache"}) is Log.create({"service": "test.cache"})
    assert Log.create({"other": 1}) is not Log.create({"other": 1})


def test_old_log_files_are_removed(monkeypatch, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setattr(GlobalPath, "log", classmethod(lambda cls: str(tmp_path)))
    for day in range(1, KEEP_LOG_FILES + 3):
        (tmp_path / f"2024-01-{day:02d}T000000.log").write_text("old", encoding="utf-8")

    Log.configure(file=True)
    Log.close()

    assert len(list(tmp_path.glob("*.log"))) == KEEP_LOG_FILES


@pytest.mark.parametrize(("text", "level"), [("debug", LogLevel.DEBUG), ("WARNING", LogLevel.WARN), (None, LogLevel.INFO)])
def test_level_parsing(text: str | None, level: LogLevel) -> None:
    assert LogLevel.parse(text) is level


def test_invalid_level_is_rejected() -> None:
    with pytest.raises(ValueError):
        LogLevel.parse("loud")
