"""Utilities module for tidyd."""

from .logging_config import setup_logging, get_logger, LoggingConfig
from .exceptions import (
    ErrorCode,
    TidyError,
    ConfigurationError,
    RuleError,
    ActionError,
    IPCError,
)
from .event_log import EventLog, LogEntry, LogLevel
from .notifications import DesktopNotifier, NotificationConfig, NotificationType

__all__ = [
    "setup_logging",
    "get_logger",
    "LoggingConfig",
    "ErrorCode",
    "TidyError",
    "ConfigurationError",
    "RuleError",
    "ActionError",
    "IPCError",
    "EventLog",
    "LogEntry",
    "LogLevel",
    "DesktopNotifier",
    "NotificationConfig",
    "NotificationType",
]
