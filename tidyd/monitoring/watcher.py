"""
Filesystem Watcher
==================

Drives periodic scans of the configured watch roots.

Each tick enumerates every enabled watch, feeds entries through the scan
tracker, evaluates settled entries against the rules and dispatches the
winning action. Every dispatched action leaves exactly one entry in the
event log.

State machine: STOPPED -> STARTING -> RUNNING -> STOPPING -> STOPPED.
The watcher never schedules itself; the daemon's scheduling loop calls
``tick()``.
"""

import os
import stat
import time
from dataclasses import replace
from enum import Enum
from fnmatch import fnmatch
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Sequence, Set, Tuple

from tidyd.actions.file_operations import FileOperations
from tidyd.actions.models import ActionType, Rule
from tidyd.actions.rules_engine import FileMetadata, RuleEngine
from tidyd.config.settings import Config, WatchConfig
from tidyd.monitoring.events import NativeEventTrigger
from tidyd.monitoring.tracker import ScanTracker
from tidyd.utils.event_log import EventLog
from tidyd.utils.exceptions import RuleError
from tidyd.utils.logging_config import Timer, correlation_id, get_logger
from tidyd.utils.notifications import DesktopNotifier, NotificationConfig

logger = get_logger(__name__)

ScanErrorCallback = Callable[[Path, OSError], None]

# Actions whose success removes the source from where it was found
_SOURCE_REMOVING = frozenset({
    ActionType.MOVE,
    ActionType.RENAME,
    ActionType.TRASH,
    ActionType.DELETE,
})


class WatcherState(Enum):
    """Lifecycle states of the watcher."""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


def is_ignored(name: str, patterns: Sequence[str]) -> bool:
    return any(fnmatch(name, pattern) for pattern in patterns)


def scan_watch(
    watch: WatchConfig,
    ignore_patterns: Sequence[str] = (),
    on_error: Optional[ScanErrorCallback] = None,
) -> Iterator[Tuple[Path, os.stat_result]]:
    """Enumerate the entries under one watch root.

    Entries are visited in name order, each directory before its contents.
    Symlinks are reported but never followed. A directory that no longer
    exists by the time its turn comes (an action moved or deleted it) is
    skipped silently.

    Args:
        watch: Watch root to enumerate.
        ignore_patterns: Glob patterns for names to skip with their subtree.
        on_error: Called with (path, error) for unreadable subtrees or
            entries that vanished mid-scan; enumeration continues.

    Yields:
        (path, lstat result) tuples.
    """
    yield from _scan_directory(watch.path, watch.recursive, ignore_patterns, on_error)


def _scan_directory(
    directory: Path,
    recursive: bool,
    ignore_patterns: Sequence[str],
    on_error: Optional[ScanErrorCallback],
) -> Iterator[Tuple[Path, os.stat_result]]:
    try:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda e: e.name)
    except OSError as e:
        if on_error:
            on_error(directory, e)
        return

    for entry in entries:
        if is_ignored(entry.name, ignore_patterns):
            continue

        path = Path(entry.path)
        try:
            st = entry.stat(follow_symlinks=False)
        except OSError as e:
            if on_error:
                on_error(path, e)
            continue

        yield path, st

        if recursive and stat.S_ISDIR(st.st_mode):
            if os.path.islink(path) or not os.path.isdir(path):
                continue
            yield from _scan_directory(path, recursive, ignore_patterns, on_error)


class Watcher:
    """Scan loop body: enumerate, debounce, match, dispatch, record.

    Owned by the daemon's scheduling thread. Read-only accessors such as
    ``state`` and ``uptime_secs`` are safe to call from other threads.
    """

    def __init__(
        self,
        config: Config,
        event_log: EventLog,
        notifier: Optional[DesktopNotifier] = None,
        wake: Optional[Callable[[], None]] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the watcher.

        Args:
            config: Active configuration snapshot.
            event_log: Destination for every outcome.
            notifier: Desktop notifier; created from the config if None.
            wake: Called by the native event backend to request a tick.
            clock: Wall-clock source for age conditions and cooldowns.
        """
        self.event_log = event_log
        self.notifier = notifier or DesktopNotifier(NotificationConfig())
        self.wake = wake
        self.clock = clock
        self.engine = RuleEngine(on_rule_error=self._on_rule_error)
        self._state = WatcherState.STOPPED
        self._started_at: Optional[float] = None
        self._tick_count = 0
        self._failing: Set[str] = set()
        self._missing_roots: Set[str] = set()
        self._native: Optional[NativeEventTrigger] = None
        self.tracker = ScanTracker(
            stability_threshold=config.general.stability_threshold,
            cooldown_secs=config.general.action_cooldown_secs,
            clock=clock,
        )
        self.apply_config(config)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def state(self) -> WatcherState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is WatcherState.RUNNING

    @property
    def uptime_secs(self) -> float:
        """Seconds since the watcher entered RUNNING (0 when not running)."""
        started = self._started_at
        if started is None or not self.is_running:
            return 0.0
        return time.monotonic() - started

    @property
    def tick_count(self) -> int:
        return self._tick_count

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def apply_config(self, config: Config) -> None:
        """Swap in a whole new configuration snapshot.

        Tracking state survives: entries already evaluated are not
        reprocessed under the new rules until their signature changes.
        Paths under watches that were removed age out through eviction.
        """
        general = config.general
        self.config = config
        self.operations = FileOperations(
            conflict_strategy=general.conflict_strategy,
            run_timeout=general.run_timeout_secs,
        )
        self.tracker.configure(general.stability_threshold, general.action_cooldown_secs)
        self.notifier.config = replace(self.notifier.config, enabled=general.notifications_enabled)
        self.engine.reset()
        self._failing.clear()
        self._missing_roots.clear()

        if self.is_running:
            self._restart_native_events()

    def update_rules(self, rules: List[Rule]) -> None:
        """Replace the rule list without touching tracking state."""
        self.config = replace(self.config, rules=list(rules))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """Transition STOPPED -> STARTING -> RUNNING.

        Returns:
            False if the watcher was not stopped.
        """
        if self._state is not WatcherState.STOPPED:
            return False

        self._state = WatcherState.STARTING
        self.engine.reset()
        self._failing.clear()
        self._missing_roots.clear()
        self._restart_native_events()

        self._started_at = time.monotonic()
        self._state = WatcherState.RUNNING

        watches = self.config.enabled_watches
        enabled_rules = sum(1 for r in self.config.rules if r.enabled)
        self.event_log.info(
            f"Watcher started: {len(watches)} folder(s), {enabled_rules} enabled rule(s)"
        )
        for watch in watches:
            logger.info(f"Watching directory: {watch.path} (recursive={watch.recursive})")
        self.notifier.notify_started(len(watches))
        return True

    def stop(self) -> bool:
        """Transition RUNNING -> STOPPING -> STOPPED.

        Returns:
            False if the watcher was not running.
        """
        if self._state is not WatcherState.RUNNING:
            return False

        self._state = WatcherState.STOPPING
        self._stop_native_events()
        self._started_at = None
        self._state = WatcherState.STOPPED
        self.event_log.info("Watcher stopped")
        self.notifier.notify_stopped()
        return True

    def fail(self, message: str) -> None:
        """Stop because of an unrecoverable problem and surface it."""
        self._state = WatcherState.STOPPING
        self._stop_native_events()
        self._started_at = None
        self._state = WatcherState.STOPPED
        self.event_log.error(message)
        self.notifier.notify_outcome("error", message)

    def _restart_native_events(self) -> None:
        self._stop_native_events()
        if not self.config.general.native_events or self.wake is None:
            return
        self._native = NativeEventTrigger(self.wake, self.config.general.ignore_patterns)
        try:
            self._native.start(self.config.enabled_watches)
        except OSError as e:
            self.event_log.warning(f"Native filesystem events unavailable, polling only: {e}")
            self._native = None

    def _stop_native_events(self) -> None:
        if self._native is not None:
            self._native.stop()
            self._native = None

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def tick(self) -> int:
        """Run one scan cycle if the watcher is running.

        An unexpected exception stops the watcher with an Error entry;
        it never propagates to the scheduling loop.

        Returns:
            Number of actions dispatched.
        """
        if self._state is not WatcherState.RUNNING:
            return 0

        self._tick_count += 1
        with correlation_id(f"tick-{self._tick_count}"):
            try:
                with Timer(logger, "scan tick") as timer:
                    dispatched = self._scan_all()
            except Exception as e:
                logger.exception("Scan tick failed")
                self.fail(f"Watcher stopped after an unexpected error: {e}")
                return 0

            if dispatched:
                logger.info(f"Tick dispatched {dispatched} action(s) in {timer.duration_ms} ms")
            return dispatched

    def _scan_all(self) -> int:
        general = self.config.general
        rules = self.config.rules
        failing: Set[str] = set()
        dispatched = 0

        def on_error(path: Path, error: OSError) -> None:
            key = str(path)
            failing.add(key)
            if key not in self._failing:
                reason = error.strerror or str(error)
                self.event_log.warning(f"Cannot scan {path}: {reason}")

        self.tracker.begin_cycle()

        for watch in self.config.enabled_watches:
            if not self._root_available(watch):
                continue
            for path, st in scan_watch(watch, general.ignore_patterns, on_error):
                signature = (st.st_size, st.st_mtime_ns)
                if not self.tracker.observe(str(path), signature):
                    continue
                if self._evaluate(path, st, rules):
                    dispatched += 1

        self.tracker.end_cycle()
        self._failing = failing
        return dispatched

    def _root_available(self, watch: WatchConfig) -> bool:
        key = str(watch.path)
        if watch.path.is_dir():
            if key in self._missing_roots:
                self._missing_roots.discard(key)
                self.event_log.info(f"Watch folder available again: {watch.path}")
            return True

        if key not in self._missing_roots:
            self._missing_roots.add(key)
            self.event_log.warning(f"Watch folder is missing: {watch.path}")
        return False

    def _evaluate(self, path: Path, st: os.stat_result, rules: List[Rule]) -> bool:
        """Match one settled entry and dispatch the winning action.

        Returns:
            True if an action was dispatched.
        """
        metadata = FileMetadata.from_stat(path, st)
        match = self.engine.evaluate(metadata, rules, now=self.clock())
        if match is None:
            return False

        # An earlier action in this tick may have removed the entry
        if not os.path.lexists(path):
            self.tracker.forget(str(path))
            return False

        logger.debug(
            f"Rule #{match.index + 1} matched {path}",
            extra={"rule": match.rule.name, "file_path": str(path)},
        )
        result = self.operations.execute(path, match.action, match.rule.name)
        self.event_log.append(result.level, result.message)
        self.notifier.notify_outcome(result.level.value, result.message)
        self.tracker.record_action(str(path))

        if result.success and match.action.type in _SOURCE_REMOVING:
            self.tracker.forget(str(path))

        if result.destination is not None:
            self._adopt(result.destination)

        return True

    def _adopt(self, destination: Path) -> None:
        try:
            st = os.lstat(destination)
        except OSError:
            return
        self.tracker.adopt(str(destination), (st.st_size, st.st_mtime_ns))

    def _on_rule_error(self, index: int, rule: Rule, error: RuleError) -> None:
        self.event_log.warning(f"Skipping rule #{index + 1} '{rule.name}': {error.message}")
