"""
tidyd - Main Application
========================

Daemon orchestration and command line entry point.

The daemon owns the configuration, event log, watcher and IPC server.
One scheduling thread drives scan ticks and is the only thread that
mutates engine state; the IPC threads submit control requests to its FIFO
queue and read snapshots for status and log queries.
"""

import signal
import sys
import threading
import time
from dataclasses import replace
from pathlib import Path
from queue import Empty, Queue
from typing import Callable, Dict, List, Optional

from tidyd import __version__
from tidyd.actions.models import describe_action
from tidyd.actions.rules_engine import RuleEngine
from tidyd.config import Config, default_config_path
from tidyd.ipc.client import DaemonClient
from tidyd.ipc.protocol import (
    ControlKind,
    ControlRequest,
    ControlResult,
    DaemonStatus,
    RuleSummary,
)
from tidyd.ipc.server import IPCServer
from tidyd.monitoring.watcher import Watcher
from tidyd.utils.event_log import EventLog, LogEntry, LogLevel
from tidyd.utils.exceptions import ConfigurationError, IPCError
from tidyd.utils.logging_config import setup_logging, get_logger, correlation_id, LoggingConfig
from tidyd.utils.notifications import DesktopNotifier, NotificationConfig

logger = get_logger(__name__)


class TidyDaemon:
    """Long-lived background process running watcher and IPC server.

    A configuration that fails to load at startup leaves the daemon
    serving IPC in the stopped state; Start is refused until a reload
    succeeds.
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        config: Optional[Config] = None,
        ipc_port: Optional[int] = None,
    ):
        """Initialize the daemon.

        Args:
            config_path: Configuration file, re-read on reload and written
                when a rule is toggled. Defaults to the standard location
                unless ``config`` is given.
            config: Pre-built configuration (skips loading at startup).
            ipc_port: Override of the configured IPC port (0 = ephemeral).
        """
        if config_path is None and config is None:
            config_path = default_config_path()
        self.config_path = Path(config_path) if config_path is not None else None
        self._config_error: Optional[str] = None

        if config is None:
            try:
                config = Config.load(self.config_path)
            except ConfigurationError as e:
                self._config_error = e.message
                config = Config()
        self.config = config

        self.event_log = EventLog(config.general.log_retention)
        if self._config_error:
            self.event_log.error(f"Configuration error: {self._config_error}")

        self.notifier = DesktopNotifier(NotificationConfig(enabled=config.general.notifications_enabled))
        self.watcher = Watcher(config, self.event_log, self.notifier, wake=self.request_tick)

        port = config.ipc.port if ipc_port is None else ipc_port
        self.ipc = IPCServer(self, host=config.ipc.host, port=port)

        self._commands: "Queue[ControlRequest]" = Queue()
        self._thread: Optional[threading.Thread] = None
        self._started_at = time.monotonic()
        self._stopped = threading.Event()

        self._handlers: Dict[ControlKind, Callable[[object], ControlResult]] = {
            ControlKind.START: self._handle_start,
            ControlKind.STOP: self._handle_stop,
            ControlKind.RELOAD: self._handle_reload,
            ControlKind.TOGGLE_RULE: self._handle_toggle,
            ControlKind.CLEAR_LOG: self._handle_clear_log,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, start_watcher: Optional[bool] = None) -> None:
        """Start the IPC server and the scheduling loop.

        Args:
            start_watcher: Start the watcher right away. Defaults to the
                ``start_daemon_on_launch`` setting.

        Raises:
            OSError: If the IPC address cannot be bound.
        """
        self.ipc.start()

        self._thread = threading.Thread(target=self._loop, daemon=True, name="Scheduler")
        self._thread.start()

        if start_watcher is None:
            start_watcher = self.config.general.start_daemon_on_launch
        if start_watcher:
            self.submit(ControlKind.START)

        logger.info(f"tidyd {__version__} daemon running, IPC at {self.ipc.url}")

    def shutdown(self, timeout: float = 10.0) -> None:
        """Stop the watcher after its current tick, then stop serving."""
        if self._thread is not None and self._thread.is_alive():
            self.submit(ControlKind.SHUTDOWN)
            self._thread.join(timeout=timeout)
        self.ipc.stop()
        self._stopped.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the daemon has shut down."""
        return self._stopped.wait(timeout)

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def submit(self, kind: ControlKind, payload: object = None):
        """Queue a control request for the scheduling loop.

        Returns:
            Future resolved with a ControlResult once the request ran.
        """
        request = ControlRequest(kind=kind, payload=payload)
        self._commands.put(request)
        return request.future

    def request_tick(self) -> None:
        """Ask for an early scan tick (native filesystem events)."""
        self._commands.put(ControlRequest(kind=ControlKind.WAKE))

    @property
    def request_timeout(self) -> float:
        return self.config.ipc.request_timeout_secs

    def status(self) -> DaemonStatus:
        """Snapshot for GET /api/status."""
        config = self.config
        return DaemonStatus(
            state=self.watcher.state.value,
            running=self.watcher.is_running,
            uptime_secs=self.watcher.uptime_secs,
            daemon_uptime_secs=time.monotonic() - self._started_at,
            watch_count=len(config.enabled_watches),
            rule_count=len(config.rules),
            enabled_rule_count=sum(1 for r in config.rules if r.enabled),
            last_log_id=self.event_log.last_id,
            config_path=str(self.config_path) if self.config_path else None,
        )

    def rule_summaries(self) -> List[RuleSummary]:
        """Snapshot for GET /api/rules."""
        return [
            RuleSummary(
                index=index,
                name=rule.name,
                enabled=rule.enabled,
                action=rule.action.type.value,
                description=describe_action(rule.action),
            )
            for index, rule in enumerate(self.config.rules)
        ]

    # ------------------------------------------------------------------
    # Scheduling loop
    # ------------------------------------------------------------------

    def _loop(self) -> None:
        with correlation_id("scheduler"):
            self._schedule()

    def _schedule(self) -> None:
        next_tick = time.monotonic()

        while True:
            timeout = None
            if self.watcher.is_running:
                timeout = max(0.0, next_tick - time.monotonic())

            try:
                request = self._commands.get(timeout=timeout)
            except Empty:
                request = None

            if request is not None:
                if request.kind is ControlKind.SHUTDOWN:
                    self.watcher.stop()
                    request.future.set_result(ControlResult(True, "Daemon shutting down"))
                    break
                if request.kind is ControlKind.WAKE:
                    next_tick = min(next_tick, time.monotonic())
                    continue
                if self._run_request(request) and request.kind is ControlKind.START:
                    next_tick = time.monotonic()
                continue

            if self.watcher.is_running and time.monotonic() >= next_tick:
                self.watcher.tick()
                next_tick = time.monotonic() + self.config.general.polling_interval_secs

        logger.info("Scheduling loop finished")

    def _run_request(self, request: ControlRequest) -> bool:
        """Apply one control request and answer its future.

        Returns:
            Whether the request succeeded.
        """
        if not request.future.set_running_or_notify_cancel():
            logger.warning(f"Dropping {request.kind.value} request abandoned by its client")
            return False

        with correlation_id(f"ctl-{request.kind.value}"):
            try:
                result = self._handlers[request.kind](request.payload)
            except Exception as e:
                logger.exception(f"Control request {request.kind.value} failed")
                result = ControlResult(False, f"{request.kind.value} failed: {e}")

        request.future.set_result(result)
        return result.ok

    # ------------------------------------------------------------------
    # Control handlers (scheduling thread only)
    # ------------------------------------------------------------------

    def _handle_start(self, payload) -> ControlResult:
        if self._config_error:
            return ControlResult(False, f"Configuration is invalid, fix it and reload: {self._config_error}")
        if not self.watcher.start():
            return ControlResult(False, f"Watcher is {self.watcher.state.value}")
        return ControlResult(True, "Watcher started")

    def _handle_stop(self, payload) -> ControlResult:
        if not self.watcher.stop():
            return ControlResult(False, "Watcher is not running")
        return ControlResult(True, "Watcher stopped")

    def _handle_reload(self, payload) -> ControlResult:
        path = self.config_path or default_config_path()
        try:
            config = Config.load(path)
        except ConfigurationError as e:
            self.event_log.error(f"Reload failed, keeping previous configuration: {e.message}")
            return ControlResult(False, f"Reload failed: {e.message}")

        if (config.ipc.host, config.ipc.port) != (self.config.ipc.host, self.config.ipc.port):
            self.event_log.warning("IPC address changes take effect after the daemon restarts")

        self.config = config
        self._config_error = None
        self.event_log.resize(config.general.log_retention)
        self.watcher.apply_config(config)

        message = f"Configuration reloaded: {len(config.enabled_watches)} folder(s), {len(config.rules)} rule(s)"
        self.event_log.info(message)
        return ControlResult(True, message)

    def _handle_toggle(self, payload) -> ControlResult:
        rules = list(self.config.rules)
        index = payload
        if not isinstance(index, int) or not 0 <= index < len(rules):
            return ControlResult(False, f"No rule at index {index}")

        loaded = self.config
        rules[index] = rules[index].toggled()
        self.config = replace(loaded, rules=rules)
        self.watcher.update_rules(rules)

        rule = rules[index]
        message = f"Rule '{rule.name}' {'enabled' if rule.enabled else 'disabled'}"
        self.event_log.info(message)

        if self.config_path is not None:
            try:
                loaded.save_rule_enabled(self.config_path, index, rule.enabled)
            except ConfigurationError as e:
                self.event_log.warning(f"Toggle not saved to the configuration file: {e.message}")
            except OSError as e:
                self.event_log.warning(f"Could not save configuration: {e.strerror or e}")
        return ControlResult(True, message)

    def _handle_clear_log(self, payload) -> ControlResult:
        self.event_log.clear()
        return ControlResult(True, "Event log cleared")


# ----------------------------------------------------------------------
# Command line
# ----------------------------------------------------------------------

_LEVEL_MARKS = {
    LogLevel.INFO: "·",
    LogLevel.SUCCESS: "✓",
    LogLevel.WARNING: "!",
    LogLevel.ERROR: "✗",
}


def format_duration(seconds: float) -> str:
    """Render seconds as e.g. ``1h 02m 03s``."""
    seconds = int(seconds)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes:02d}m {secs:02d}s"
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"


def format_entry(entry: LogEntry) -> str:
    mark = _LEVEL_MARKS[entry.level]
    return f"{entry.timestamp:%Y-%m-%d %H:%M:%S} {mark} {entry.message}"


def _print_result(result: ControlResult) -> int:
    print(f"{'✓' if result.ok else '✗'} {result.message}")
    return 0 if result.ok else 1


def _client_for(config_path: Path) -> DaemonClient:
    try:
        ipc = Config.load(config_path).ipc
    except ConfigurationError as e:
        logger.warning(f"{e.message}; using the default IPC address")
        ipc = Config().ipc
    return DaemonClient(ipc.base_url, timeout=ipc.request_timeout_secs + 5.0)


def _cmd_run(args) -> int:
    daemon = TidyDaemon(args.config)
    try:
        daemon.start()
    except OSError as e:
        print(f"✗ Cannot listen on {daemon.ipc.url}: {e.strerror or e}", file=sys.stderr)
        return 1

    shutdown_requested = threading.Event()

    def signal_handler(sig, frame):
        shutdown_requested.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    # Keep main thread alive
    while not shutdown_requested.wait(1.0):
        pass

    daemon.shutdown()
    return 0


def _cmd_status(client: DaemonClient, args) -> int:
    status = client.status()
    print(f"\nState:        {status.state}")
    print(f"Uptime:       {format_duration(status.uptime_secs) if status.running else '-'}")
    print(f"Daemon up:    {format_duration(status.daemon_uptime_secs)}")
    print(f"Watches:      {status.watch_count}")
    print(f"Rules:        {status.enabled_rule_count}/{status.rule_count} enabled")
    print(f"Last log id:  {status.last_log_id}")
    if status.config_path:
        print(f"Config:       {status.config_path}")
    return 0


def _cmd_rules(client: DaemonClient, args) -> int:
    rules = client.rules()
    if not rules:
        print("No rules defined.")
        return 0

    print(f"\nRules ({len(rules)}), first match wins:\n")
    for rule in rules:
        status = "✓" if rule.enabled else "✗"
        print(f"  {status} [{rule.index + 1}] {rule.name}")
        print(f"      → {rule.description}")
    return 0


def _cmd_log(client: DaemonClient, args) -> int:
    entries = client.log()
    if args.lines > 0:
        entries = entries[-args.lines:]
    for entry in entries:
        print(format_entry(entry))
    if not entries:
        print("Event log is empty.")
    return 0


def _cmd_tail(client: DaemonClient, args) -> int:
    try:
        for entry in client.tail():
            print(format_entry(entry), flush=True)
    except KeyboardInterrupt:
        pass
    if client.missed_entries:
        print(f"({client.missed_entries} entries were evicted before they could be shown)")
    return 0


def _cmd_toggle(client: DaemonClient, args) -> int:
    return _print_result(client.toggle_rule(args.index - 1))


def _cmd_check(args) -> int:
    """Validate a configuration file without a daemon."""
    try:
        config = Config.load(args.config)
    except ConfigurationError as e:
        print(f"✗ {e.message}")
        return 2

    problems = 0
    for watch in config.watches:
        if not watch.path.is_dir():
            print(f"! Watch folder does not exist: {watch.path}")

    for index, rule, error in RuleEngine().check_rules(config.rules):
        print(f"✗ Rule #{index + 1} '{rule.name}': {error.message}")
        problems += 1

    if problems:
        return 1
    print(f"✓ {args.config}: {len(config.watches)} watch(es), {len(config.rules)} rule(s) OK")
    return 0


_CLIENT_COMMANDS = {
    "status": _cmd_status,
    "rules": _cmd_rules,
    "log": _cmd_log,
    "tail": _cmd_tail,
    "toggle": _cmd_toggle,
    "start": lambda client, args: _print_result(client.start()),
    "stop": lambda client, args: _print_result(client.stop()),
    "reload": lambda client, args: _print_result(client.reload()),
    "clear-log": lambda client, args: _print_result(client.clear_log()),
}


def build_parser():
    import argparse

    parser = argparse.ArgumentParser(
        prog="tidyd",
        description="tidyd - rule-based file organizing daemon"
    )
    parser.add_argument(
        '--config', '-c',
        type=Path,
        default=None,
        help='Configuration file (default: $TIDYD_CONFIG or ~/.config/tidyd/config.yaml)'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable debug logging'
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f"%(prog)s {__version__}"
    )

    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    commands.required = True

    commands.add_parser("run", help="Run the daemon in the foreground")
    commands.add_parser("status", help="Show daemon status")
    commands.add_parser("start", help="Start watching")
    commands.add_parser("stop", help="Stop watching (the daemon keeps running)")
    commands.add_parser("reload", help="Reload the configuration file")
    commands.add_parser("rules", help="List rules in evaluation order")
    commands.add_parser("tail", help="Follow the event log")
    commands.add_parser("clear-log", help="Clear the event log")
    commands.add_parser("check", help="Validate the configuration file")

    toggle = commands.add_parser("toggle", help="Enable or disable a rule")
    toggle.add_argument("index", type=int, help="Rule number as shown by 'rules'")

    log = commands.add_parser("log", help="Show recent event log entries")
    log.add_argument(
        '--lines', '-n',
        type=int,
        default=20,
        help='Number of entries to show (0 for all, default: 20)'
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point with CLI support."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.config is None:
        args.config = default_config_path()

    level = "DEBUG" if args.verbose else ("INFO" if args.command == "run" else "WARNING")
    setup_logging(LoggingConfig(level=level, file_output=args.command == "run"))

    if args.command == "run":
        return _cmd_run(args)
    if args.command == "check":
        return _cmd_check(args)

    with _client_for(args.config) as client:
        try:
            return _CLIENT_COMMANDS[args.command](client, args)
        except IPCError as e:
            print(f"✗ {e.message}", file=sys.stderr)
            return 1


if __name__ == "__main__":
    sys.exit(main())
