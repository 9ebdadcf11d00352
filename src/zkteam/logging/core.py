"""Core logging configuration for zkteam.

Library modules log through ``logging.getLogger(__name__)``; this module
wires those loggers to handlers and formatters once, at application start.
"""

import logging
import sys
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..errors import ConfigurationError
from .formatters import JSONFormatter, TextFormatter

ROOT_LOGGER_NAME = "zkteam"


class LogLevel(Enum):
    """Log levels."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    def to_logging(self) -> int:
        return getattr(logging, self.name)


@dataclass
class LogConfig:
    """Log configuration."""

    name: str = ROOT_LOGGER_NAME
    level: LogLevel = LogLevel.INFO
    format_type: str = "text"
    handlers: List[str] = field(default_factory=lambda: ["console"])
    file_path: Optional[str] = None
    propagate: bool = False
    static_fields: Dict[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        if self.format_type not in ("text", "json"):
            raise ConfigurationError(
                f"Unknown log format {self.format_type!r}", config_key="format_type"
            )
        for handler in self.handlers:
            if handler not in ("console", "file"):
                raise ConfigurationError(
                    f"Unknown log handler {handler!r}", config_key="handlers"
                )
        if "file" in self.handlers and not self.file_path:
            raise ConfigurationError(
                "File handler requires file_path", config_key="file_path"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "level": self.level.value,
            "format_type": self.format_type,
            "handlers": list(self.handlers),
            "file_path": self.file_path,
            "propagate": self.propagate,
            "static_fields": dict(self.static_fields),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LogConfig":
        return cls(
            name=data.get("name", ROOT_LOGGER_NAME),
            level=LogLevel(data.get("level", LogLevel.INFO.value)),
            format_type=data.get("format_type", "text"),
            handlers=list(data.get("handlers", ["console"])),
            file_path=data.get("file_path"),
            propagate=data.get("propagate", False),
            static_fields=dict(data.get("static_fields", {})),
        )


_lock = threading.RLock()
_installed: List[logging.Handler] = []


def _build_formatter(config: LogConfig) -> logging.Formatter:
    if config.format_type == "json":
        return JSONFormatter(static_fields=config.static_fields)
    return TextFormatter()


def setup_logging(config: Optional[LogConfig] = None) -> logging.Logger:
    """Install handlers on the package logger; calling again replaces them."""
    config = config or LogConfig()
    config.validate()

    with _lock:
        logger = logging.getLogger(config.name)
        for handler in _installed:
            logger.removeHandler(handler)
            handler.close()
        _installed.clear()

        formatter = _build_formatter(config)
        for name in config.handlers:
            if name == "console":
                handler: logging.Handler = logging.StreamHandler(sys.stderr)
            else:
                handler = logging.FileHandler(config.file_path, encoding="utf-8")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
            _installed.append(handler)

        logger.setLevel(config.level.to_logging())
        logger.propagate = config.propagate
        return logger


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """Get a logger below the package namespace."""
    if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def shutdown_logging(name: str = ROOT_LOGGER_NAME) -> None:
    """Remove and close handlers installed by ``setup_logging``."""
    with _lock:
        logger = logging.getLogger(name)
        for handler in _installed:
            logger.removeHandler(handler)
            handler.close()
        _installed.clear()
