"""Logging setup for zkteam.

Modules log with ``logging.getLogger(__name__)``; applications call
``setup_logging`` once to choose text or JSON output.
"""

from .core import (
    LogConfig,
    LogLevel,
    get_logger,
    setup_logging,
    shutdown_logging,
)
from .formatters import JSONFormatter, TextFormatter

__all__ = [
    "LogConfig",
    "LogLevel",
    "get_logger",
    "setup_logging",
    "shutdown_logging",
    "JSONFormatter",
    "TextFormatter",
]
