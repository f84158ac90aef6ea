"""Configuration management.

Loads and merges configuration from multiple sources with proper precedence.
"""

import json
import os
from contextvars import ContextVar, Token
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config_loader import deep_merge, load_json_file
from .config_schema import Config, LoggingConfig
from .global_paths import GlobalPath
from ..util.log import Log

log = Log.create({"service": "config"})

__all__ = [
    "Config",
    "ConfigError",
    "ConfigManager",
    "LoggingConfig",
]

CONFIG_FILES = ("shellfx.json", "shellfx.jsonc")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


class ConfigError(Exception):
    """Configuration error."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"Config error in {path}: {message}")


def _flag(name: str, value: str) -> bool:
    text = value.strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigError(name, f"expected a boolean, got {value!r}")


def _env_overrides(environ: Dict[str, str]) -> Dict[str, Any]:
    """Config fields set through ``SHELLFX_*`` environment variables."""
    result: Dict[str, Any] = {}
    for key in ("shell", "prefix", "dialect", "cwd", "kill_signal"):
        value = environ.get(f"SHELLFX_{key.upper()}")
        if value is not None:
            result[key] = value
    for key in ("verbose", "quiet", "async_stdin"):
        name = f"SHELLFX_{key.upper()}"
        if name in environ:
            result[key] = _flag(name, environ[name])
    timeout = environ.get("SHELLFX_TIMEOUT")
    if timeout:
        try:
            result["timeout"] = float(timeout)
        except ValueError:
            raise ConfigError("SHELLFX_TIMEOUT", f"expected seconds, got {timeout!r}") from None
    level = environ.get("SHELLFX_LOG_LEVEL")
    if level:
        result["logging"] = {"level": level}
    return result


_config_var: ContextVar["ConfigManager"] = ContextVar("_config_var")


class ConfigManager:
    """Configuration management.

    Instance-based with ContextVar for scoping. Class methods delegate
    to the current instance.

    Sources, lowest precedence first:
    1. Global config (shellfx.json in the user config directory)
    2. Project configs (shellfx.json from the filesystem root down to the directory)
    3. SHELLFX_CONFIG_CONTENT (inline JSON)
    4. SHELLFX_* environment variables
    """

    def __init__(self, environ: Optional[Dict[str, str]] = None) -> None:
        self._environ = environ
        self._cache: Optional[Config] = None
        self._sources: List[str] = []

    # -- ContextVar plumbing --

    @classmethod
    def current(cls) -> "ConfigManager":
        try:
            return _config_var.get()
        except LookupError:
            instance = cls()
            _config_var.set(instance)
            return instance

    @classmethod
    def provide(cls, instance: "ConfigManager") -> Token["ConfigManager"]:
        return _config_var.set(instance)

    @classmethod
    def restore(cls, token: Token["ConfigManager"]) -> None:
        _config_var.reset(token)

    # -- Public API (class methods delegate to current instance) --

    @classmethod
    def reset(cls) -> None:
        """Drop the cached configuration."""
        inst = cls.current()
        inst._cache = None
        inst._sources = []

    @classmethod
    def load(cls, directory: str = ".") -> Config:
        return cls.current()._load(directory)

    @classmethod
    def get(cls) -> Config:
        inst = cls.current()
        if inst._cache is None:
            return inst._load()
        return inst._cache

    @classmethod
    def sources(cls) -> List[str]:
        """Files that contributed to the loaded configuration."""
        return cls.current()._sources.copy()

    # -- Instance methods --

    def _load_files(self, paths: List[Path], result: Dict[str, Any], kind: str) -> Dict[str, Any]:
        for path in paths:
            data = load_json_file(path)
            if data:
                result = deep_merge(result, data)
                self._sources.append(str(path))
                log.info(f"loaded {kind} config", {"path": str(path)})
        return result

    def _load(self, directory: str = ".") -> Config:
        if self._cache is not None:
            return self._cache

        environ = self._environ if self._environ is not None else dict(os.environ)
        result: Dict[str, Any] = {}
        self._sources = []

        # 1. Global config
        global_dir = Path(GlobalPath.config())
        result = self._load_files([global_dir / name for name in CONFIG_FILES], result, "global")

        # 2. Project configs, root first so nearer files win
        current = Path(directory).resolve()
        ancestors = [current, *current.parents]
        project_files = [
            ancestor / name
            for ancestor in reversed(ancestors)
            for name in CONFIG_FILES
            if ancestor != global_dir
        ]
        result = self._load_files(project_files, result, "project")

        # 3. Inline JSON
        content = environ.get("SHELLFX_CONFIG_CONTENT")
        if content:
            try:
                data = json.loads(content)
            except json.JSONDecodeError as e:
                raise ConfigError("SHELLFX_CONFIG_CONTENT", str(e)) from e
            if not isinstance(data, dict):
                raise ConfigError("SHELLFX_CONFIG_CONTENT", "expected a JSON object")
            result = deep_merge(result, data)
            log.info("loaded config from SHELLFX_CONFIG_CONTENT")

        # 4. Environment variables
        result = deep_merge(result, _env_overrides(environ))

        try:
            self._cache = Config.model_validate(result)
        except ValueError as e:
            source = self._sources[-1] if self._sources else "<environment>"
            raise ConfigError(source, str(e)) from e
        return self._cache
