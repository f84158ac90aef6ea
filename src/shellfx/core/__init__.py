"""Core infrastructure modules."""

from .global_paths import GlobalPath

__all__ = ["GlobalPath"]

# Configuration is exported separately to avoid circular imports
# To use: from shellfx.core.config import ConfigManager
