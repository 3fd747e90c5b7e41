"""Shared utilities."""

from .config_manager import ConfigManager, DEFAULT_CONFIG_PATH, DEFAULT_LABELS
from .timestamps import utc_now

__all__ = ["ConfigManager", "DEFAULT_CONFIG_PATH", "DEFAULT_LABELS", "utc_now"]
