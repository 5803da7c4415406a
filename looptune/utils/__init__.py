"""Utility modules for looptune.

Provides source round-tripping helpers and logging configuration.
"""

from looptune.utils.logging import MultilineFormatter, setup_logging
from looptune.utils.source import capture_error, exec_source_to_func, get_source

__all__ = ["capture_error", "exec_source_to_func", "get_source", "setup_logging", "MultilineFormatter"]
