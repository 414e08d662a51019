# common/logging_config.py
# -*- coding: utf-8 -*-
"""
Logging configuration for the provisioner.

Two handlers are installed on the root logger:
- a console handler with symbol-decorated, human-readable lines at the
  requested level;
- an append-only run log (one JSON object per line) that always records
  DEBUG, so every command invocation and result is kept for post-mortem
  diagnosis regardless of console verbosity.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from provisioner.config_models import SYMBOLS_DEFAULT

SIMPLE_LOG_FORMAT_WITH_PREFIX_PLACEHOLDER = "{log_prefix}%(asctime)s - %(symbol)s %(message)s"
SIMPLE_LOG_FORMAT_NO_PREFIX = "%(asctime)s - %(symbol)s %(message)s"

_STANDARD_RECORD_ATTRS = {
    "name", "msg", "args", "levelname", "levelno", "pathname", "filename",
    "module", "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "getMessage",
    "exc_info", "exc_text", "stack_info", "taskName", "symbol", "message",
    "asctime",
}


class SymbolFormatter(logging.Formatter):
    """
    A custom formatter that adds symbols to log messages based on the log level.
    """

    def __init__(
        self, fmt=None, datefmt=None, style="%", validate=True, symbols=None
    ):
        super().__init__(fmt, datefmt, style, validate)
        self.symbols = symbols or SYMBOLS_DEFAULT

    def format(self, record):
        if record.levelno == logging.DEBUG:
            record.symbol = self.symbols.get("debug", "🐛")
        elif record.levelno == logging.INFO:
            record.symbol = self.symbols.get("info", "ℹ️")
        elif record.levelno == logging.WARNING:
            record.symbol = self.symbols.get("warning", "⚠️")
        elif record.levelno == logging.ERROR:
            record.symbol = self.symbols.get("error", "❌")
        elif record.levelno == logging.CRITICAL:
            record.symbol = self.symbols.get("critical", "🔥")
        else:
            record.symbol = ""

        return super().format(record)


class JSONFormatter(logging.Formatter):
    """
    Formats log records as single-line JSON with timestamp, level, logger,
    message and any ``extra`` fields.
    """

    def __init__(self, service_name: str = "pi-provisioner"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service_name,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
            "process": record.process,
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        extra_fields = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STANDARD_RECORD_ATTRS
        }
        if extra_fields:
            log_entry["extra"] = extra_fields

        return json.dumps(log_entry, ensure_ascii=False, default=str)


def _open_private_log(log_file: Path) -> None:
    """Creates the run log with owner-only permissions before the handler opens it."""
    log_file.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
    fd = os.open(str(log_file), os.O_CREAT | os.O_APPEND | os.O_WRONLY, 0o600)
    os.close(fd)
    os.chmod(log_file, 0o600)


def setup_logging(
    log_level: int = logging.INFO,
    log_file: Optional[str] = None,
    log_to_console: bool = True,
    log_prefix: Optional[str] = None,
    symbols: Optional[Dict[str, str]] = None,
    service_name: str = "pi-provisioner",
) -> Optional[Path]:
    """
    Configures the root logger.

    Parameters:
    log_level: int
        Console logging level. Defaults to logging.INFO.
    log_file: Optional[str]
        Path of the append-only JSON run log. Created with 0600 permissions.
    log_to_console: bool
        Whether to log to the console (stdout). Defaults to True.
    log_prefix: Optional[str]
        Optional prefix for console lines.
    symbols: Optional[Dict[str, str]]
        Symbol set used by the console formatter.
    service_name: str
        Name recorded in every JSON log entry.

    Returns:
    Optional[Path]
        The run log path actually in use, or None when file logging could not
        be set up.
    """
    handlers: List[logging.Handler] = []
    log_file_path: Optional[Path] = None

    if log_file:
        try:
            log_file_path = Path(log_file)
            _open_private_log(log_file_path)
            file_handler = logging.FileHandler(log_file_path, mode="a", encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(JSONFormatter(service_name))
            handlers.append(file_handler)
        except OSError as e:
            print(
                f"Warning: Could not create file handler for log file {log_file}: {e}",
                file=sys.stderr,
            )
            log_file_path = None

    if log_to_console:
        actual_prefix = (
            (log_prefix.strip() + " ")
            if log_prefix and log_prefix.strip()
            else ""
        )
        if actual_prefix:
            format_str = SIMPLE_LOG_FORMAT_WITH_PREFIX_PLACEHOLDER.format(log_prefix=actual_prefix)
        else:
            format_str = SIMPLE_LOG_FORMAT_NO_PREFIX
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(
            SymbolFormatter(fmt=format_str, datefmt="%H:%M:%S", symbols=symbols)
        )
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if log_file_path else log_level)

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    for handler in handlers:
        root_logger.addHandler(handler)

    # Third-party HTTP chatter stays out of the console.
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(
        "Logging initialized",
        extra={"console_level": logging.getLevelName(log_level), "log_file": str(log_file_path)},
    )
    return log_file_path
