"""
Logging Configuration
=====================

Diagnostic logging for the daemon and CLI, separate from the user-facing
event log. Records carry a per-thread correlation id naming what the thread
is doing (``scheduler``, ``tick-42``, ``ctl-reload``), so a tick's records
can be picked out of the rotating JSON log file.
"""

import json
import logging
import logging.handlers
import os
import sys
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional, TextIO

ROOT_LOGGER = "tidyd"
NO_CORRELATION = "-"

# Extras passed through ``extra=`` by the watcher, executor and Timer
EXTRA_FIELDS = ("rule", "file_path", "operation", "duration_ms")

_thread_local = threading.local()


def get_correlation_id() -> str:
    """Get the current thread's correlation id (``-`` when unset)."""
    return getattr(_thread_local, "correlation_id", NO_CORRELATION)


def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation id for the current thread."""
    _thread_local.correlation_id = correlation_id


@contextmanager
def correlation_id(value: str) -> Iterator[str]:
    """Tag records logged by this thread inside the block with ``value``.

    The previous id is restored on exit, so blocks nest.
    """
    previous = get_correlation_id()
    set_correlation_id(value)
    try:
        yield value
    finally:
        set_correlation_id(previous)


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for the rotating log file."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "correlation_id": get_correlation_id(),
            "message": record.getMessage(),
        }
        for name in EXTRA_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ConsoleFormatter(logging.Formatter):
    """Compact console line, colored by level when the stream is a terminal."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def __init__(self, color: bool = False):
        super().__init__()
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        timestamp = time.strftime('%H:%M:%S', time.localtime(record.created))
        level = f"{record.levelname:8}"
        if self.color:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"

        msg = f"[{timestamp}] {level} [{get_correlation_id()}] {record.name}: {record.getMessage()}"
        if record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)
        return msg


def default_log_dir() -> Path:
    """``$XDG_STATE_HOME/tidyd``, falling back to ``~/.local/state/tidyd``."""
    state_home = os.environ.get("XDG_STATE_HOME")
    base = Path(state_home) if state_home else Path.home() / ".local" / "state"
    return base / "tidyd"


@dataclass
class LoggingConfig:
    """Configuration for the logging system.

    Attributes:
        level: Level name for the ``tidyd`` logger tree.
        log_dir: Directory of the rotating JSON log file.
        console_output: Log to stderr.
        file_output: Log to ``<log_dir>/tidyd.log``; only the daemon does.
        json_format: Use JSON on the console too.
        max_file_size: Rotation threshold in bytes.
        backup_count: Rotated files to keep.
    """
    level: str = "INFO"
    log_dir: Path = field(default_factory=default_log_dir)
    console_output: bool = True
    file_output: bool = True
    json_format: bool = False
    max_file_size: int = 5 * 1024 * 1024
    backup_count: int = 3


def _console_formatter(config: LoggingConfig, stream: TextIO) -> logging.Formatter:
    if config.json_format:
        return JSONFormatter()
    isatty = getattr(stream, "isatty", None)
    return ConsoleFormatter(color=bool(isatty and isatty()))


def setup_logging(config: Optional[LoggingConfig] = None) -> logging.Logger:
    """Configure the ``tidyd`` logger tree, replacing earlier handlers.

    Args:
        config: Logging configuration. Uses defaults if not provided.

    Returns:
        The configured ``tidyd`` logger.
    """
    config = config or LoggingConfig()

    root_logger = logging.getLogger(ROOT_LOGGER)
    root_logger.setLevel(getattr(logging, config.level.upper()))
    root_logger.handlers.clear()
    root_logger.propagate = False

    if config.console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(_console_formatter(config, sys.stderr))
        root_logger.addHandler(console_handler)

    if config.file_output:
        config.log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            config.log_dir / "tidyd.log",
            maxBytes=config.max_file_size,
            backupCount=config.backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger inside the ``tidyd`` tree.

    Args:
        name: Module name (typically __name__); bare names are prefixed.
    """
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


class Timer:
    """Context manager that measures a block and logs its duration.

    The duration stays available as ``duration_ms`` after the block.
    """

    def __init__(self, logger: logging.Logger, operation: str, level: int = logging.DEBUG):
        self.logger = logger
        self.operation = operation
        self.level = level
        self.start_time = 0.0
        self.duration_ms = 0.0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = round((time.perf_counter() - self.start_time) * 1000, 2)
        self.logger.log(
            self.level,
            f"{self.operation} took {self.duration_ms} ms",
            extra={"operation": self.operation, "duration_ms": self.duration_ms},
        )
        return False
