"""
Unit tests for configuration module.
"""

import pytest
from pathlib import Path
import yaml

from tidyd.actions.conflict_resolver import ConflictStrategy
from tidyd.actions.models import DeleteAction, MoveAction, NothingAction
from tidyd.config.settings import (
    Config,
    GeneralConfig,
    IPCConfig,
    WatchConfig,
    default_config_path,
)
from tidyd.utils.exceptions import ConfigurationError


class TestGeneralConfig:
    """Tests for GeneralConfig."""

    def test_default_values(self):
        """Test default configuration values."""
        config = GeneralConfig()

        assert config.polling_interval_secs == 5
        assert config.log_retention == 1000
        assert config.start_daemon_on_launch is True
        assert config.notifications_enabled is False
        assert config.stability_threshold == 2
        assert config.conflict_strategy == ConflictStrategy.RENAME
        assert "*.crdownload" in config.ignore_patterns

    def test_from_dict(self):
        """Test creation from dictionary."""
        data = {
            "polling_interval_secs": 10,
            "log_retention": 50,
            "conflict_strategy": "skip",
            "run_timeout_secs": 2.5,
        }
        config = GeneralConfig.from_dict(data)

        assert config.polling_interval_secs == 10
        assert config.log_retention == 50
        assert config.conflict_strategy == ConflictStrategy.SKIP
        assert config.run_timeout_secs == 2.5
        # Unspecified keys keep their defaults
        assert config.stability_threshold == 2

    @pytest.mark.parametrize("data", [
        {"polling_interval_secs": 0},
        {"log_retention": -1},
        {"stability_threshold": "two"},
        {"run_timeout_secs": 0},
        {"start_daemon_on_launch": "yes"},
        {"conflict_strategy": "merge"},
        {"ignore_patterns": "*.tmp"},
    ])
    def test_invalid_values_rejected(self, data):
        """Test schema violations raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            GeneralConfig.from_dict(data)


class TestIPCConfig:
    """Tests for IPCConfig."""

    def test_defaults(self):
        config = IPCConfig()

        assert config.host == "127.0.0.1"
        assert config.port == 7525
        assert config.base_url == "http://127.0.0.1:7525"

    def test_ipv6_loopback(self):
        config = IPCConfig.from_dict({"host": "::1", "port": 9000})

        assert config.base_url == "http://[::1]:9000"

    @pytest.mark.parametrize("host", ["0.0.0.0", "192.168.1.10", "example.com"])
    def test_non_loopback_host_rejected(self, host):
        """Test the control server can only bind to loopback."""
        with pytest.raises(ConfigurationError):
            IPCConfig.from_dict({"host": host})

    def test_port_out_of_range(self):
        with pytest.raises(ConfigurationError):
            IPCConfig.from_dict({"port": 70000})


class TestWatchConfig:
    """Tests for WatchConfig."""

    def test_tilde_expanded(self):
        watch = WatchConfig.from_dict({"path": "~/Downloads", "recursive": True})

        assert watch.path == Path.home() / "Downloads"
        assert watch.recursive is True
        assert watch.enabled is True

    def test_bare_string(self):
        watch = WatchConfig.from_dict("/tmp/inbox")

        assert watch.path == Path("/tmp/inbox")
        assert watch.recursive is False

    def test_missing_path(self):
        with pytest.raises(ConfigurationError):
            WatchConfig.from_dict({"recursive": True})


class TestConfig:
    """Tests for main Config class."""

    def test_default_config(self):
        """Test default configuration has no watches or rules."""
        config = Config()

        assert isinstance(config.general, GeneralConfig)
        assert isinstance(config.ipc, IPCConfig)
        assert config.watches == []
        assert config.rules == []

    def test_load_nonexistent_file(self, workspace):
        """Test loading non-existent file returns defaults."""
        config = Config.load(workspace / "missing.yaml")

        assert isinstance(config, Config)
        assert config.general.polling_interval_secs == 5

    def test_load_from_yaml(self, workspace):
        """Test loading configuration from YAML file."""
        path = workspace / "config.yaml"
        path.write_text(yaml.safe_dump({
            "general": {"polling_interval_secs": 3},
            "watches": [{"path": str(workspace / "inbox"), "recursive": True}],
            "rules": [
                {
                    "name": "Temp files",
                    "conditions": {"extension": ".tmp"},
                    "action": {"type": "delete"},
                },
                {
                    "name": "Invoices",
                    "enabled": False,
                    "conditions": {"name_glob": "invoice_*.pdf"},
                    "action": {"type": "move", "destination": "~/Invoices"},
                },
            ],
        }))

        config = Config.load(path)

        assert config.general.polling_interval_secs == 3
        assert config.watches[0].path == workspace / "inbox"
        assert [r.name for r in config.rules] == ["Temp files", "Invoices"]
        assert config.rules[0].action == DeleteAction()
        assert config.rules[0].conditions.extension == "tmp"
        assert config.rules[1].enabled is False
        assert config.rules[1].action == MoveAction(destination="~/Invoices")

    def test_empty_file(self, workspace):
        path = workspace / "config.yaml"
        path.write_text("")

        config = Config.load(path)

        assert config.rules == []

    def test_invalid_yaml(self, workspace):
        """Test YAML syntax errors are configuration errors."""
        path = workspace / "config.yaml"
        path.write_text("rules: [unclosed")

        with pytest.raises(ConfigurationError):
            Config.load(path)

    def test_unknown_action_type(self, workspace):
        path = workspace / "config.yaml"
        path.write_text(yaml.safe_dump({
            "rules": [{"name": "bad", "action": {"type": "shred"}}],
        }))

        with pytest.raises(ConfigurationError) as exc_info:
            Config.load(path)

        assert "shred" in exc_info.value.message

    def test_invalid_regex_is_not_fatal(self, workspace):
        """Test regex problems are left to the rule engine."""
        path = workspace / "config.yaml"
        path.write_text(yaml.safe_dump({
            "rules": [{
                "name": "broken",
                "conditions": {"name_regex": "("},
                "action": {"type": "nothing"},
            }],
        }))

        config = Config.load(path)

        assert config.rules[0].conditions.name_regex == "("
        assert config.rules[0].action == NothingAction()

    def test_save_rule_enabled_changes_only_that_flag(self, workspace):
        """Test toggling writes one flag and leaves the rest of the file as written."""
        path = workspace / "config.yaml"
        path.write_text(yaml.safe_dump({
            "general": {"log_retention": 10},
            "watches": ["~/Downloads"],
            "rules": [
                {"name": "Temp files", "conditions": {"extension": "tmp"}, "action": {"type": "delete"}},
                {"name": "Audit", "action": {"type": "nothing"}},
            ],
        }, sort_keys=False))
        config = Config.load(path)

        config.save_rule_enabled(path, 0, False)

        raw = yaml.safe_load(path.read_text())
        assert raw["watches"] == ["~/Downloads"]
        assert raw["general"] == {"log_retention": 10}
        assert raw["rules"][0] == {
            "name": "Temp files",
            "conditions": {"extension": "tmp"},
            "action": {"type": "delete"},
            "enabled": False,
        }
        assert raw["rules"][1] == {"name": "Audit", "action": {"type": "nothing"}}
        assert Config.load(path).rules[0].enabled is False

    def test_save_rule_enabled_refuses_edited_rules(self, workspace):
        path = workspace / "config.yaml"
        path.write_text(yaml.safe_dump({"rules": [{"name": "Audit", "action": {"type": "nothing"}}]}))
        config = Config.load(path)

        edited = yaml.safe_dump({"rules": [
            {"name": "Audit", "action": {"type": "nothing"}},
            {"name": "User edit", "action": {"type": "trash"}},
        ]})
        path.write_text(edited)

        with pytest.raises(ConfigurationError):
            config.save_rule_enabled(path, 0, False)

        assert path.read_text() == edited

    def test_example_config_loads(self):
        """Test the shipped example configuration is valid."""
        example = Path(__file__).resolve().parent.parent / "config.example.yaml"

        config = Config.load(example)

        assert len(config.rules) == 5
        assert config.rules[3].enabled is False

    def test_enabled_watches(self, workspace):
        config = Config._from_dict({
            "watches": [
                {"path": str(workspace / "a")},
                {"path": str(workspace / "b"), "enabled": False},
            ],
        })

        assert [w.path.name for w in config.enabled_watches] == ["a"]


class TestDefaultConfigPath:
    """Tests for default_config_path."""

    def test_environment_override(self, monkeypatch, workspace):
        monkeypatch.setenv("TIDYD_CONFIG", str(workspace / "custom.yaml"))

        assert default_config_path() == workspace / "custom.yaml"

    def test_home_location(self, monkeypatch):
        monkeypatch.delenv("TIDYD_CONFIG", raising=False)

        assert default_config_path() == Path.home() / ".config" / "tidyd" / "config.yaml"
