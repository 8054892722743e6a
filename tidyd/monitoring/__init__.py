"""Monitoring module: scan loop, debounce tracking and native events."""

from .tracker import PathState, ScanTracker
from .events import NativeEventTrigger, WakeEventHandler
from .watcher import Watcher, WatcherState, scan_watch

__all__ = [
    "PathState",
    "ScanTracker",
    "NativeEventTrigger",
    "WakeEventHandler",
    "Watcher",
    "WatcherState",
    "scan_watch",
]
