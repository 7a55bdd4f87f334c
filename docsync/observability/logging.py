"""Logging setup for docsync.

Console output is either colored text or one JSON object per line; an
optional log file always receives JSON. Records emitted from indexing
worker threads carry the thread name so interleaved batch output can be
told apart.
"""

from __future__ import annotations
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RESERVED_ATTRS = frozenset({
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'lineno', 'funcName', 'created',
    'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'exc_info', 'exc_text',
    'stack_info', 'taskName', 'message',
})

NOISY_LOGGERS = ("aiohttp", "apscheduler", "urllib3", "sqlalchemy.engine")

MAIN_THREAD = "MainThread"


def _context(record: logging.LogRecord) -> Dict[str, Any]:
    """Thread and asyncio task that produced ``record``, when not the defaults."""
    context: Dict[str, Any] = {}
    if record.threadName and record.threadName != MAIN_THREAD:
        context["thread"] = record.threadName
    task_name = getattr(record, "taskName", None)
    if task_name:
        context["task"] = task_name
    return context


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with ``extra`` fields merged in."""

    def __init__(self, service_name: str = "docsync"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        entry.update(_context(record))

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        entry.update({k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS})
        return json.dumps(entry, default=str)


class ColoredFormatter(logging.Formatter):
    """``time | LEVEL | logger [thread] | message`` with ANSI level colors."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S')
        origin = record.name
        thread = _context(record).get("thread")
        if thread:
            origin = f"{origin} [{thread}]"

        line = f"{timestamp} | {record.levelname:8} | {origin} | {record.getMessage()}"
        if self.use_colors and record.levelname in self.COLORS:
            line = f"{self.COLORS[record.levelname]}{line}{self.RESET}"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _file_handler(log_file: str, service_name: str) -> logging.Handler:
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setFormatter(JSONFormatter(service_name))
    return handler


def setup_logging(
    level: str = "INFO",
    service_name: str = "docsync",
    log_file: Optional[str] = None,
    use_json: bool = False,
    use_colors: bool = True
) -> logging.Logger:
    """Configure the root logger.

    Replaces any handlers already installed, so calling it twice does not
    duplicate output.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        service_name: Value of the ``service`` field in JSON output
        log_file: Optional path of a JSON log file
        use_json: JSON instead of colored text on the console
        use_colors: ANSI colors for text output

    Returns:
        The root logger
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(numeric_level)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(JSONFormatter(service_name) if use_json else ColoredFormatter(use_colors))
    handlers = [console]
    if log_file:
        handlers.append(_file_handler(log_file, service_name))

    for handler in handlers:
        handler.setLevel(numeric_level)
        root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return root_logger


def setup_logging_from_config(config) -> logging.Logger:
    """Configure logging from a :class:`docsync.config.LoggingConfig`."""
    return setup_logging(
        level=config.level,
        log_file=config.log_file,
        use_json=config.json_format,
        use_colors=config.use_colors,
    )
