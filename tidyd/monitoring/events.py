"""
Native Filesystem Events
========================

Optional watchdog backend. Filesystem notifications never decide anything
on their own: they only ask the scheduling loop for an early scan tick,
so the scan tracker still alone decides when a path has settled.
"""

import threading
import time
from fnmatch import fnmatch
from pathlib import Path
from typing import Callable, List, Sequence

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from tidyd.utils.logging_config import get_logger

logger = get_logger(__name__)

MIN_WAKE_INTERVAL = 1.0

# Events that do not change anything a scan could observe
_PASSIVE_EVENTS = frozenset({"opened", "closed_no_write"})


class WakeEventHandler(FileSystemEventHandler):
    """Turns filesystem events into wake-up requests.

    Requests are rate limited to one per ``min_interval`` seconds.
    """

    def __init__(
        self,
        wake: Callable[[], None],
        ignore_patterns: Sequence[str] = (),
        min_interval: float = MIN_WAKE_INTERVAL,
    ):
        """Initialize the event handler.

        Args:
            wake: Called to request an early scan.
            ignore_patterns: Glob patterns for names whose events are dropped.
            min_interval: Minimum seconds between two wake-up requests.
        """
        super().__init__()
        self.wake = wake
        self.ignore_patterns = list(ignore_patterns)
        self.min_interval = min_interval
        self._last_wake = float("-inf")
        self._lock = threading.Lock()

    def _should_ignore(self, file_path: str) -> bool:
        name = Path(file_path).name
        return any(fnmatch(name, pattern) for pattern in self.ignore_patterns)

    def on_any_event(self, event) -> None:
        if event.event_type in _PASSIVE_EVENTS:
            return
        if self._should_ignore(str(event.src_path)):
            return

        now = time.monotonic()
        with self._lock:
            if now - self._last_wake < self.min_interval:
                return
            self._last_wake = now

        logger.debug(f"Filesystem event ({event.event_type}): {event.src_path}")
        self.wake()


class NativeEventTrigger:
    """Owns the watchdog Observer scheduled on every enabled watch root."""

    def __init__(
        self,
        wake: Callable[[], None],
        ignore_patterns: Sequence[str] = (),
        min_interval: float = MIN_WAKE_INTERVAL,
    ):
        self.handler = WakeEventHandler(wake, ignore_patterns, min_interval)
        self.observer = None

    @property
    def is_running(self) -> bool:
        return self.observer is not None and self.observer.is_alive()

    def start(self, watches: List) -> int:
        """Schedule the observer on existing watch roots and start it.

        Args:
            watches: Enabled WatchConfig entries.

        Returns:
            Number of roots being observed.
        """
        self.stop()
        observer = Observer()
        scheduled = 0

        for watch in watches:
            if not watch.path.is_dir():
                logger.debug(f"Not observing missing folder: {watch.path}")
                continue
            try:
                observer.schedule(self.handler, str(watch.path), recursive=watch.recursive)
            except OSError as e:
                logger.warning(f"Cannot observe {watch.path}: {e}")
                continue
            scheduled += 1

        observer.start()
        self.observer = observer
        logger.info(f"Native filesystem events enabled for {scheduled} folder(s)")
        return scheduled

    def stop(self) -> None:
        if self.observer is None:
            return
        self.observer.stop()
        self.observer.join(timeout=5.0)
        self.observer = None
        logger.debug("Native filesystem events disabled")
