"""
Control Protocol
================

Types shared by the daemon, the IPC server and the IPC client.

Control requests (start, stop, reload, toggle, clear) travel through the
daemon's FIFO command queue and are answered by the scheduling loop with a
ControlResult. Read requests (status, rules, log) are answered from
snapshots and never queue.
"""

from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

STATUS_PATH = "/api/status"
RULES_PATH = "/api/rules"
LOG_PATH = "/api/log"
LOG_STREAM_PATH = "/api/log/stream"
START_PATH = "/api/start"
STOP_PATH = "/api/stop"
RELOAD_PATH = "/api/reload"
CLEAR_LOG_PATH = "/api/log/clear"


def toggle_path(index: int) -> str:
    return f"{RULES_PATH}/{index}/toggle"


class ControlKind(Enum):
    """Requests serialized through the scheduling loop."""
    START = "start"
    STOP = "stop"
    RELOAD = "reload"
    TOGGLE_RULE = "toggle_rule"
    CLEAR_LOG = "clear_log"
    # Internal: early tick from native events, loop shutdown
    WAKE = "wake"
    SHUTDOWN = "shutdown"


@dataclass
class ControlResult:
    """Answer to a control request."""
    ok: bool
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": self.ok, "message": self.message}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ControlResult":
        return cls(ok=bool(data.get("ok")), message=str(data.get("message", "")))


@dataclass
class ControlRequest:
    """A queued control request and the future its answer is set on."""
    kind: ControlKind
    payload: Any = None
    future: Future = field(default_factory=Future)


@dataclass
class DaemonStatus:
    """Snapshot answered by GET /api/status.

    Attributes:
        state: Watcher state value ("stopped", "running", ...).
        running: Whether the watcher is running.
        uptime_secs: Seconds since the watcher started (0 when stopped).
        daemon_uptime_secs: Seconds since the daemon process started.
        watch_count: Enabled watches.
        rule_count: Configured rules.
        enabled_rule_count: Enabled rules.
        last_log_id: Id of the newest event log entry.
        config_path: Configuration file in use, if any.
    """
    state: str
    running: bool
    uptime_secs: float
    daemon_uptime_secs: float
    watch_count: int
    rule_count: int
    enabled_rule_count: int
    last_log_id: int
    config_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state,
            "running": self.running,
            "uptime_secs": round(self.uptime_secs, 3),
            "daemon_uptime_secs": round(self.daemon_uptime_secs, 3),
            "watch_count": self.watch_count,
            "rule_count": self.rule_count,
            "enabled_rule_count": self.enabled_rule_count,
            "last_log_id": self.last_log_id,
            "config_path": self.config_path,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DaemonStatus":
        return cls(
            state=str(data["state"]),
            running=bool(data["running"]),
            uptime_secs=float(data.get("uptime_secs", 0)),
            daemon_uptime_secs=float(data.get("daemon_uptime_secs", 0)),
            watch_count=int(data.get("watch_count", 0)),
            rule_count=int(data.get("rule_count", 0)),
            enabled_rule_count=int(data.get("enabled_rule_count", 0)),
            last_log_id=int(data.get("last_log_id", 0)),
            config_path=data.get("config_path"),
        )


@dataclass
class RuleSummary:
    """One row of GET /api/rules."""
    index: int
    name: str
    enabled: bool
    action: str
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "name": self.name,
            "enabled": self.enabled,
            "action": self.action,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleSummary":
        return cls(
            index=int(data["index"]),
            name=str(data["name"]),
            enabled=bool(data["enabled"]),
            action=str(data["action"]),
            description=str(data.get("description", "")),
        )
