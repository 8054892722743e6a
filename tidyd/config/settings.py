"""
Configuration Management System
===============================

Provides dataclass-based configuration with YAML file loading support.
All settings are validated and have sensible defaults. Schema problems
raise ConfigurationError; rule-scoped problems such as an invalid regex are
left for the rule engine to report at evaluation time.
"""

import ipaddress
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Any, Dict

import yaml

from tidyd.actions.conflict_resolver import ConflictStrategy
from tidyd.actions.models import Rule
from tidyd.actions.templates import expand_path
from tidyd.utils.exceptions import ConfigurationError
from tidyd.utils.logging_config import get_logger

logger = get_logger(__name__)

CONFIG_ENV_VAR = "TIDYD_CONFIG"
DEFAULT_IPC_PORT = 7525


def default_config_path() -> Path:
    """Location of the configuration file when none is given explicitly.

    ``$TIDYD_CONFIG`` wins; otherwise ``~/.config/tidyd/config.yaml``.
    """
    env = os.environ.get(CONFIG_ENV_VAR)
    if env:
        return expand_path(env)
    return Path.home() / ".config" / "tidyd" / "config.yaml"


def _section(data: Any, name: str) -> Dict[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"'{name}' must be a mapping", config_key=name, expected_type="mapping")
    return data


def _int(data: Dict[str, Any], key: str, default: int, minimum: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ConfigurationError(
            f"'{key}' must be an integer >= {minimum}",
            config_key=key,
            expected_type="int",
        )
    return value


def _float(data: Dict[str, Any], key: str, default: float, minimum: float, inclusive: bool = True) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"'{key}' must be a number", config_key=key, expected_type="float")
    if value < minimum or (not inclusive and value == minimum):
        bound = ">=" if inclusive else ">"
        raise ConfigurationError(
            f"'{key}' must be {bound} {minimum}",
            config_key=key,
            expected_type="float",
        )
    return float(value)


def _bool(data: Dict[str, Any], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ConfigurationError(f"'{key}' must be true or false", config_key=key, expected_type="bool")
    return value


@dataclass
class GeneralConfig:
    """Daemon-wide settings.

    Attributes:
        polling_interval_secs: Seconds between scan ticks.
        log_retention: Capacity of the in-memory event log.
        start_daemon_on_launch: Start the watcher as soon as the daemon runs.
        notifications_enabled: Send desktop notifications for outcomes.
        stability_threshold: Consecutive identical scans before a path is
            eligible for evaluation.
        run_timeout_secs: Timeout for Run actions.
        conflict_strategy: How destination name collisions are handled.
        action_cooldown_secs: Minimum delay before an already acted-on path
            is evaluated again after its signature changed.
        native_events: Use OS filesystem notifications to trigger early scans.
        ignore_patterns: Glob patterns for names that are never tracked.
    """
    polling_interval_secs: int = 5
    log_retention: int = 1000
    start_daemon_on_launch: bool = True
    notifications_enabled: bool = False
    stability_threshold: int = 2
    run_timeout_secs: float = 60.0
    conflict_strategy: ConflictStrategy = ConflictStrategy.RENAME
    action_cooldown_secs: float = 0.0
    native_events: bool = False
    ignore_patterns: List[str] = field(default_factory=lambda: [
        "*.crdownload", "*.part", "~$*"
    ])

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GeneralConfig":
        """Create GeneralConfig from dictionary."""
        if not data:
            return cls()

        strategy = data.get("conflict_strategy", cls.conflict_strategy.value)
        try:
            conflict_strategy = ConflictStrategy(str(strategy).lower())
        except ValueError:
            choices = ", ".join(s.value for s in ConflictStrategy)
            raise ConfigurationError(
                f"'conflict_strategy' must be one of: {choices}",
                config_key="conflict_strategy",
                expected_type="str",
            )

        patterns = data.get("ignore_patterns", cls().ignore_patterns)
        if not isinstance(patterns, list) or not all(isinstance(p, str) for p in patterns):
            raise ConfigurationError(
                "'ignore_patterns' must be a list of strings",
                config_key="ignore_patterns",
                expected_type="list",
            )

        return cls(
            polling_interval_secs=_int(data, "polling_interval_secs", cls.polling_interval_secs, 1),
            log_retention=_int(data, "log_retention", cls.log_retention, 1),
            start_daemon_on_launch=_bool(data, "start_daemon_on_launch", cls.start_daemon_on_launch),
            notifications_enabled=_bool(data, "notifications_enabled", cls.notifications_enabled),
            stability_threshold=_int(data, "stability_threshold", cls.stability_threshold, 1),
            run_timeout_secs=_float(data, "run_timeout_secs", cls.run_timeout_secs, 0, inclusive=False),
            conflict_strategy=conflict_strategy,
            action_cooldown_secs=_float(data, "action_cooldown_secs", cls.action_cooldown_secs, 0),
            native_events=_bool(data, "native_events", cls.native_events),
            ignore_patterns=list(patterns),
        )


@dataclass
class IPCConfig:
    """Local control server settings.

    Attributes:
        host: Loopback address the server binds to.
        port: TCP port (0 picks an ephemeral port).
        request_timeout_secs: How long a control request may wait for the
            scheduling loop before the client is told it timed out.
    """
    host: str = "127.0.0.1"
    port: int = DEFAULT_IPC_PORT
    request_timeout_secs: float = 10.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IPCConfig":
        """Create IPCConfig from dictionary."""
        if not data:
            return cls()

        host = str(data.get("host", cls.host))
        if not _is_loopback(host):
            raise ConfigurationError(
                f"IPC host must be a loopback address, got '{host}'",
                config_key="host",
                expected_type="loopback address",
            )

        port = _int(data, "port", cls.port, 0)
        if port > 65535:
            raise ConfigurationError("'port' must be <= 65535", config_key="port", expected_type="int")

        return cls(
            host=host,
            port=port,
            request_timeout_secs=_float(data, "request_timeout_secs", cls.request_timeout_secs, 0, inclusive=False),
        )

    @property
    def base_url(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"http://{host}:{self.port}"


def _is_loopback(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


@dataclass
class WatchConfig:
    """A root folder the daemon scans.

    Attributes:
        path: Directory to scan, with ``~`` expanded.
        recursive: Whether to descend into subdirectories.
        enabled: Disabled watches are kept in configuration but not scanned.
    """
    path: Path
    recursive: bool = False
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: Any, index: int = 0) -> "WatchConfig":
        """Create WatchConfig from a mapping or a bare path string."""
        if isinstance(data, str):
            data = {"path": data}
        if not isinstance(data, dict):
            raise ConfigurationError(f"watches[{index}] must be a mapping", expected_type="mapping")

        path = data.get("path")
        if not isinstance(path, str) or not path.strip():
            raise ConfigurationError(
                f"watches[{index}]: 'path' must be a non-empty string",
                config_key="path",
                expected_type="str",
            )

        return cls(
            path=expand_path(path),
            recursive=_bool(data, "recursive", False),
            enabled=_bool(data, "enabled", True),
        )


@dataclass
class Config:
    """Main configuration container.

    Aggregates all configuration sections and provides loading from YAML.
    The rule list is ordered: its order is the evaluation priority.
    """
    general: GeneralConfig = field(default_factory=GeneralConfig)
    ipc: IPCConfig = field(default_factory=IPCConfig)
    watches: List[WatchConfig] = field(default_factory=list)
    rules: List[Rule] = field(default_factory=list)

    @property
    def enabled_watches(self) -> List[WatchConfig]:
        return [w for w in self.watches if w.enabled]

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """Load configuration from YAML file.

        Args:
            config_path: Path to the configuration file. If None, the
                default location is used.

        Returns:
            Config instance with loaded settings.

        Raises:
            ConfigurationError: If the file cannot be read, is not valid
                YAML or does not follow the schema.
        """
        if config_path is None:
            config_path = default_config_path()
        config_path = Path(config_path)

        if not config_path.exists():
            logger.warning(f"Config file not found at {config_path}, using defaults")
            return cls()

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.error(f"Failed to parse config file: {e}")
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}", cause=e)
        except OSError as e:
            logger.error(f"Failed to load config file: {e}")
            raise ConfigurationError(f"Cannot read {config_path}: {e.strerror or e}", cause=e)

        if not isinstance(data, dict):
            raise ConfigurationError(f"{config_path}: top level must be a mapping", expected_type="mapping")

        config = cls._from_dict(data)
        logger.info(f"Loaded configuration from {config_path}")
        return config

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create Config from dictionary."""
        watches = data.get("watches") or []
        rules = data.get("rules") or []
        if not isinstance(watches, list):
            raise ConfigurationError("'watches' must be a list", config_key="watches", expected_type="list")
        if not isinstance(rules, list):
            raise ConfigurationError("'rules' must be a list", config_key="rules", expected_type="list")

        return cls(
            general=GeneralConfig.from_dict(_section(data.get("general"), "general")),
            ipc=IPCConfig.from_dict(_section(data.get("ipc"), "ipc")),
            watches=[WatchConfig.from_dict(w, i) for i, w in enumerate(watches)],
            rules=[Rule.from_dict(r, i) for i, r in enumerate(rules)],
        )

    def save_rule_enabled(self, config_path: Path, index: int, enabled: bool) -> None:
        """Write one rule's ``enabled`` flag back to the configuration file.

        The file is re-read and only ``rules[index].enabled`` changes in its
        raw mapping, so every other key keeps the value the user wrote.
        The file's rule list must still be the one this config was loaded
        with; otherwise nothing is written.

        Args:
            config_path: File this configuration was loaded from.
            index: Position of the toggled rule.
            enabled: New value of the flag.

        Raises:
            ConfigurationError: If the file no longer parses or its rules
                were edited since the last load.
            OSError: If the file cannot be read or written.
        """
        config_path = Path(config_path)
        with open(config_path, 'r', encoding='utf-8') as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {config_path}: {e}", cause=e)

        raw_rules = data.get("rules") if isinstance(data, dict) else None
        if not isinstance(raw_rules, list):
            raise ConfigurationError(f"{config_path} has no rule list", config_key="rules")

        on_disk = [Rule.from_dict(r, i) for i, r in enumerate(raw_rules)]
        if on_disk != self.rules:
            raise ConfigurationError(
                f"Rules in {config_path} changed since the last reload",
                config_key="rules",
            )

        raw_rules[index]["enabled"] = enabled
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)

        logger.info(f"Saved rule #{index + 1} enabled={enabled} to {config_path}")
