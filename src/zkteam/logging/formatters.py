"""Log formatters for zkteam."""

import json
import logging
import time
import traceback
from typing import Any, Dict, Optional

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRIBUTES = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """JSON log formatter."""

    def __init__(
        self,
        include_thread: bool = True,
        include_process: bool = True,
        timestamp_format: str = "iso",
        static_fields: Optional[Dict[str, Any]] = None,
        indent: Optional[int] = None,
        ensure_ascii: bool = False,
    ):
        super().__init__()
        self.include_thread = include_thread
        self.include_process = include_process
        self.timestamp_format = timestamp_format
        self.static_fields = static_fields or {}
        self.indent = indent
        self.ensure_ascii = ensure_ascii

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        data: Dict[str, Any] = dict(self.static_fields)
        data["timestamp"] = self._format_timestamp(record.created)
        data["level"] = record.levelname.lower()
        data["logger"] = record.name

        if record.exc_info:
            exc_type, exc_value, exc_tb = record.exc_info
            data["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value),
                "traceback": "".join(
                    traceback.format_exception(exc_type, exc_value, exc_tb)
                ),
            }
            to_dict = getattr(exc_value, "to_dict", None)
            if callable(to_dict):
                data["error"] = to_dict()

        extra = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRIBUTES and not key.startswith("_")
        }
        if extra:
            data["extra"] = extra

        if self.include_thread:
            data["thread_id"] = record.thread

        if self.include_process:
            data["process_id"] = record.process

        data["message"] = record.getMessage()

        return json.dumps(
            data, indent=self.indent, ensure_ascii=self.ensure_ascii, default=str
        )

    def _format_timestamp(self, timestamp: float) -> str:
        if self.timestamp_format == "iso":
            return (
                time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(timestamp))
                + f".{int((timestamp % 1) * 1000000):06d}Z"
            )
        elif self.timestamp_format == "unix":
            return str(timestamp)
        else:
            return time.strftime(self.timestamp_format, time.gmtime(timestamp))


class TextFormatter(logging.Formatter):
    """Plain text log formatter."""

    def __init__(
        self,
        format_string: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        timestamp_format: str = "%Y-%m-%d %H:%M:%S",
    ):
        super().__init__(fmt=format_string, datefmt=timestamp_format)
