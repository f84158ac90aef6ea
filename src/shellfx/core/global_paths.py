"""Per-user directories for shellfx configuration and logs."""

import os
from pathlib import Path

from platformdirs import user_config_dir, user_data_dir

APP_NAME = "shellfx"


class GlobalPath:
    """Platform-specific application directories."""

    @classmethod
    def home(cls) -> str:
        """User home directory, overridable for tests."""
        return os.environ.get("SHELLFX_TEST_HOME", str(Path.home()))

    @classmethod
    def data(cls) -> str:
        return user_data_dir(APP_NAME)

    @classmethod
    def log(cls) -> str:
        """Log file directory."""
        return str(Path(cls.data()) / "log")

    @classmethod
    def config(cls) -> str:
        """Global configuration directory."""
        return os.environ.get("SHELLFX_CONFIG_DIR") or user_config_dir(APP_NAME)
