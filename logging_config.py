"""Logging setup for the relay.

Call setup_logging() once at startup; modules grab a logger with get_logger(__name__).
Supports JSON output for production and colored console lines for development.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

LOG_FORMATS = ("console", "json")

_NOISY_LOGGERS = ("websockets", "asyncio", "httpx", "httpcore")


class StructuredFormatter(logging.Formatter):
    """One JSON object per log line: timestamp, level, logger, message."""

    def __init__(self, service_name: str = "relay"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        for key in ("connection_id", "user_id"):
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)

        return json.dumps(log_entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable lines with color-coded levels."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%H:%M:%S.%f")[:-3]
        if self.use_color:
            color = self.COLORS.get(record.levelname, self.RESET)
            level = f"{color}{record.levelname:8s}{self.RESET}"
        else:
            level = f"{record.levelname:8s}"

        line = f"{timestamp} {level} {record.name}: {record.getMessage()}"

        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)

        return line


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None, log_format: str = "console") -> None:
    """Configure the root logger.

    Args:
        log_level: Level name, e.g. "DEBUG" or "info". Unknown names fall back to INFO.
        log_file: Optional path; when set, records are also written there (never colored).
        log_format: "console" or "json". Unknown values fall back to console.
    """
    level = getattr(logging, str(log_level).upper(), None)
    if not isinstance(level, int):
        level = logging.INFO

    log_format = (log_format or "console").lower()
    if log_format not in LOG_FORMATS:
        log_format = "console"

    if log_format == "json":
        stream_formatter = StructuredFormatter()
        file_formatter = StructuredFormatter()
    else:
        stream_formatter = ConsoleFormatter(use_color=sys.stdout.isatty())
        file_formatter = ConsoleFormatter(use_color=False)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(stream_formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(file_formatter)
        root.addHandler(file_handler)

    root.setLevel(level)

    for noisy in _NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
