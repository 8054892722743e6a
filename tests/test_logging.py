"""
Unit tests for logging helpers and the exception hierarchy.
"""

import json
import logging

from tidyd.utils.exceptions import ActionError, ErrorCode, RuleError
from tidyd.utils.logging_config import (
    ConsoleFormatter,
    JSONFormatter,
    LoggingConfig,
    Timer,
    correlation_id,
    default_log_dir,
    get_correlation_id,
    get_logger,
    setup_logging,
)


class TestLogging:
    """Tests for logging helpers."""

    def test_logger_namespace(self):
        assert get_logger("tidyd.monitoring.watcher").name == "tidyd.monitoring.watcher"
        assert get_logger("plugin").name == "tidyd.plugin"

    def test_json_formatter_includes_extras(self):
        record = logging.LogRecord("tidyd.test", logging.ERROR, __file__, 1, "move failed", None, None)
        record.file_path = "/in/a.txt"
        record.operation = "move"
        record.category = "ignored"

        with correlation_id("tick-7"):
            data = json.loads(JSONFormatter().format(record))

        assert data["correlation_id"] == "tick-7"
        assert data["file_path"] == "/in/a.txt"
        assert data["operation"] == "move"
        assert data["level"] == "ERROR"
        assert "category" not in data
        assert "rule" not in data

    def test_correlation_ids_nest(self):
        assert get_correlation_id() == "-"

        with correlation_id("scheduler"):
            with correlation_id("ctl-reload"):
                assert get_correlation_id() == "ctl-reload"
            assert get_correlation_id() == "scheduler"

        assert get_correlation_id() == "-"

    def test_console_formatter_plain_without_terminal(self):
        record = logging.LogRecord("tidyd.test", logging.WARNING, __file__, 1, "careful", None, None)

        line = ConsoleFormatter().format(record)

        assert "\033[" not in line
        assert line.endswith("WARNING  [-] tidyd.test: careful")

    def test_default_log_dir_follows_xdg(self, monkeypatch, workspace):
        monkeypatch.setenv("XDG_STATE_HOME", str(workspace))

        assert default_log_dir() == workspace / "tidyd"

    def test_setup_logging_file_output(self, workspace):
        logger = setup_logging(LoggingConfig(level="DEBUG", log_dir=workspace / "logs", console_output=False))
        try:
            get_logger("test").info("hello", extra={"rule": "Temp files"})
            for handler in logger.handlers:
                handler.flush()

            line = (workspace / "logs" / "tidyd.log").read_text().splitlines()[-1]
            assert json.loads(line)["rule"] == "Temp files"
        finally:
            for handler in logger.handlers:
                handler.close()
            logger.handlers.clear()
            logger.propagate = True
            logger.setLevel(logging.NOTSET)

    def test_timer_records_duration(self):
        logger = logging.getLogger("tidyd.test.timer")

        with Timer(logger, "scan tick") as timer:
            pass

        assert timer.duration_ms >= 0.0


class TestExceptions:
    """Tests for the TidyError hierarchy."""

    def test_action_error_to_dict(self):
        cause = PermissionError("denied")
        error = ActionError("Cannot move", file_path="/in/a.txt", error_code=ErrorCode.PERMISSION_DENIED, cause=cause)

        data = error.to_dict()

        assert data["error_type"] == "ActionError"
        assert data["error_name"] == "PERMISSION_DENIED"
        assert data["details"]["file_path"] == "/in/a.txt"
        assert data["cause"] == "denied"

    def test_rule_error_defaults_to_regex(self):
        error = RuleError("bad pattern", rule_name="broken")

        assert error.error_code == ErrorCode.INVALID_REGEX
        assert error.message == "bad pattern"
