"""
Event Log
=========

Bounded ring buffer of daemon outcomes.

The scheduling loop appends; IPC handlers read snapshots or block waiting
for entries newer than an id they already hold. Identifiers increase
monotonically for the life of the daemon, so a reader can detect entries
evicted while it was away.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

from tidyd.utils.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_RETENTION = 1000


class LogLevel(Enum):
    """Severity of a log entry."""
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


_PYTHON_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.SUCCESS: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


@dataclass(frozen=True)
class LogEntry:
    """A single immutable outcome record.

    Attributes:
        id: Monotonically increasing identifier.
        timestamp: When the entry was appended.
        level: Severity.
        message: Human-readable description.
    """
    id: int
    timestamp: datetime
    level: LogLevel
    message: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire representation."""
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LogEntry":
        """Create from the wire representation."""
        return cls(
            id=int(data["id"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            level=LogLevel(data["level"]),
            message=str(data["message"]),
        )


class EventLog:
    """Fixed-capacity, thread-safe ring buffer of LogEntry values.

    On overflow the oldest entries are silently evicted.
    """

    def __init__(self, capacity: int = DEFAULT_RETENTION):
        """Initialize the event log.

        Args:
            capacity: Maximum number of retained entries.
        """
        if capacity < 1:
            raise ValueError("Event log capacity must be at least 1")
        self._entries: Deque[LogEntry] = deque(maxlen=capacity)
        self._next_id = 1
        self._changed = threading.Condition(threading.Lock())

    @property
    def capacity(self) -> int:
        return self._entries.maxlen

    @property
    def last_id(self) -> int:
        """Id of the most recently appended entry (0 if none yet)."""
        with self._changed:
            return self._next_id - 1

    def __len__(self) -> int:
        with self._changed:
            return len(self._entries)

    def append(self, level: LogLevel, message: str) -> LogEntry:
        """Append a new entry and wake waiting readers.

        Args:
            level: Severity.
            message: Description.

        Returns:
            The created entry.
        """
        with self._changed:
            entry = LogEntry(
                id=self._next_id,
                timestamp=datetime.now(),
                level=level,
                message=message,
            )
            self._next_id += 1
            self._entries.append(entry)
            self._changed.notify_all()

        logger.log(_PYTHON_LEVELS[level], message)
        return entry

    def info(self, message: str) -> LogEntry:
        return self.append(LogLevel.INFO, message)

    def success(self, message: str) -> LogEntry:
        return self.append(LogLevel.SUCCESS, message)

    def warning(self, message: str) -> LogEntry:
        return self.append(LogLevel.WARNING, message)

    def error(self, message: str) -> LogEntry:
        return self.append(LogLevel.ERROR, message)

    def snapshot(self) -> List[LogEntry]:
        """Copy of all retained entries, oldest first."""
        with self._changed:
            return list(self._entries)

    def since(self, after_id: int = 0) -> List[LogEntry]:
        """Retained entries with an id greater than ``after_id``."""
        with self._changed:
            return [e for e in self._entries if e.id > after_id]

    def wait_for(self, after_id: int, timeout: Optional[float] = None) -> List[LogEntry]:
        """Block until entries newer than ``after_id`` exist or timeout expires.

        Returns:
            The newer entries (empty on timeout).
        """
        with self._changed:
            self._changed.wait_for(
                lambda: bool(self._entries) and self._entries[-1].id > after_id,
                timeout=timeout,
            )
            return [e for e in self._entries if e.id > after_id]

    def resize(self, capacity: int) -> None:
        """Change the capacity, keeping the newest entries."""
        if capacity < 1:
            raise ValueError("Event log capacity must be at least 1")
        with self._changed:
            if capacity != self._entries.maxlen:
                self._entries = deque(self._entries, maxlen=capacity)

    def clear(self) -> None:
        """Drop all retained entries; identifiers keep increasing."""
        with self._changed:
            self._entries.clear()
            self._changed.notify_all()
