"""Structured logging for the engine and the CLI.

Each service gets one tagged logger from ``Log.create({"service": "..."})``.
Lines go nowhere until ``Log.configure`` turns on the stderr sink, the file
sink in ``GlobalPath.log()``, or both.
"""

import json
import sys
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, TextIO

from ..core.global_paths import GlobalPath

KEEP_LOG_FILES = 10

_RESERVED = ("time", "delta_ms", "level", "msg")


class LogLevel(str, Enum):
    """Severity, lowest first."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"

    @classmethod
    def parse(cls, value: str | None) -> "LogLevel":
        if value is None:
            return cls.INFO
        name = value.strip().upper()
        if name == "WARNING":
            name = "WARN"
        if name not in cls.__members__:
            raise ValueError(f"invalid log level: {value}")
        return cls[name]

    @property
    def rank(self) -> int:
        return list(LogLevel).index(self)


class LogFormat(str, Enum):
    """Line layout of the sinks."""

    KV = "kv"
    JSON = "json"
    PRETTY = "pretty"

    @classmethod
    def parse(cls, value: str | None) -> "LogFormat":
        if value is None:
            return cls.KV
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"invalid log format: {value}") from None


@dataclass
class _Sinks:
    level: LogLevel = LogLevel.INFO
    format: LogFormat = LogFormat.KV
    console: bool = False
    file: bool = False
    path: Optional[str] = None
    handle: Optional[TextIO] = None

    @property
    def active(self) -> bool:
        return self.console or self.handle is not None


_sinks = _Sinks()
_previous = time.time()


def _plain(value: Any) -> Any:
    """JSON-friendly form of a tag value; exceptions keep their cause chain."""
    if isinstance(value, BaseException):
        text = f"{type(value).__name__}: {value}"
        if value.__cause__ is not None:
            text = f"{text} Caused by: {_plain(value.__cause__)}"
        return text
    if value is None or isinstance(value, (bool, int, float, dict, list, tuple)):
        return value
    return str(value)


def _kv(value: Any) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    text = str(value)
    needs_quotes = not text or "=" in text or '"' in text or any(ch.isspace() for ch in text)
    return json.dumps(text, ensure_ascii=False) if needs_quotes else text


class Logger:
    """Emits lines tagged with ``tags`` plus per-call extras."""

    def __init__(self, tags: Optional[Dict[str, Any]] = None):
        self.tags = dict(tags or {})

    def _record(self, level: LogLevel, message: Any, extra: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        global _previous

        now = time.time()
        elapsed, _previous = int((now - _previous) * 1000), now
        record: Dict[str, Any] = {
            "time": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "delta_ms": elapsed,
            "level": level.value.lower(),
            "msg": _plain(message),
        }
        for key, value in {**self.tags, **(extra or {})}.items():
            if value is not None:
                record[key] = _plain(value)
        return record

    def _render(self, level: LogLevel, record: Dict[str, Any]) -> str:
        if _sinks.format is LogFormat.JSON:
            return json.dumps(record, ensure_ascii=False, separators=(",", ":"), default=str)

        tags = " ".join(f"{key}={_kv(value)}" for key, value in record.items() if key not in _RESERVED)
        if _sinks.format is LogFormat.PRETTY:
            head = f"{record['time']} {level.value:<5} {record['msg'] or ''}"
            return f"{head} ({tags}) +{record['delta_ms']}ms" if tags else f"{head} +{record['delta_ms']}ms"

        fields = [record["time"], f"+{record['delta_ms']}ms", f"level={record['level']}", f"msg={_kv(record['msg'])}"]
        if tags:
            fields.append(tags)
        return " ".join(fields)

    def log(self, level: LogLevel, message: Any = None, extra: Optional[Dict[str, Any]] = None) -> None:
        if not _sinks.active or level.rank < _sinks.level.rank:
            return
        line = self._render(level, self._record(level, message, extra)) + "\n"
        if _sinks.console:
            sys.stderr.write(line)
            sys.stderr.flush()
        if _sinks.handle is not None:
            _sinks.handle.write(line)
            _sinks.handle.flush()

    def debug(self, message: Any = None, extra: Optional[Dict[str, Any]] = None) -> None:
        self.log(LogLevel.DEBUG, message, extra)

    def info(self, message: Any = None, extra: Optional[Dict[str, Any]] = None) -> None:
        self.log(LogLevel.INFO, message, extra)

    def warn(self, message: Any = None, extra: Optional[Dict[str, Any]] = None) -> None:
        self.log(LogLevel.WARN, message, extra)

    def error(self, message: Any = None, extra: Optional[Dict[str, Any]] = None) -> None:
        self.log(LogLevel.ERROR, message, extra)


class Log:
    """Logger registry and sink configuration."""

    _loggers: Dict[str, Logger] = {}

    @classmethod
    def create(cls, tags: Optional[Dict[str, Any]] = None) -> Logger:
        """Logger for ``tags``; one shared instance per ``service`` tag."""
        tags = tags or {}
        service = tags.get("service")
        if not isinstance(service, str) or not service:
            return Logger(tags)
        return cls._loggers.setdefault(service, Logger(tags))

    @classmethod
    def configure(
        cls,
        *,
        level: LogLevel | None = None,
        format: LogFormat | None = None,
        console: bool | None = None,
        file: bool | None = None,
        dev: bool = False,
    ) -> None:
        """Set the level, format and sinks; ``None`` keeps the current value.

        The file sink writes a timestamped file (``dev.log`` when ``dev``) in
        the log directory and prunes it to the newest ``KEEP_LOG_FILES``.
        """
        for name, value in (("level", level), ("format", format), ("console", console), ("file", file)):
            if value is not None:
                setattr(_sinks, name, value)

        cls.close()
        _sinks.path = None
        if not _sinks.file:
            return

        directory = Path(GlobalPath.log())
        directory.mkdir(parents=True, exist_ok=True)
        cls._prune(directory)
        name = "dev" if dev else datetime.now().strftime("%Y-%m-%dT%H%M%S")
        path = directory / f"{name}.log"
        _sinks.path = str(path)
        _sinks.handle = path.open("w", encoding="utf-8")

    @classmethod
    def file(cls) -> str:
        """Path of the open log file, or an empty string."""
        return _sinks.path or ""

    @classmethod
    def _prune(cls, directory: Path) -> None:
        stamped = sorted(directory.glob("????-??-??T??????.log"), key=lambda p: p.stat().st_mtime)
        excess = len(stamped) - (KEEP_LOG_FILES - 1)
        for old in stamped[: max(0, excess)]:
            old.unlink(missing_ok=True)

    @classmethod
    def close(cls) -> None:
        if _sinks.handle is not None:
            _sinks.handle.close()
            _sinks.handle = None

    @classmethod
    def reset(cls) -> None:
        """Close the file and go back to silent defaults."""
        global _sinks
        cls.close()
        _sinks = _Sinks()
