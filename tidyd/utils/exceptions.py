"""
Custom Exceptions
=================

Defines custom exception classes for tidyd.
All exceptions include error codes for programmatic handling.
"""

from enum import Enum
from typing import Optional


class ErrorCode(Enum):
    """Error codes for programmatic error handling."""

    # General errors (1000-1099)
    UNKNOWN_ERROR = 1000
    CONFIGURATION_ERROR = 1001
    PERMISSION_DENIED = 1003

    # Rule errors (1100-1199)
    INVALID_REGEX = 1100
    INVALID_TEMPLATE = 1101

    # Action errors (1200-1299)
    ACTION_FAILED = 1200
    SOURCE_MISSING = 1201
    DESTINATION_MISSING = 1202
    DESTINATION_INVALID = 1203
    PROCESS_FAILED = 1204
    PROCESS_TIMEOUT = 1205
    ARCHIVE_FAILED = 1206
    TRASH_FAILED = 1207

    # IPC errors (1300-1399)
    DAEMON_UNAVAILABLE = 1300
    REQUEST_TIMEOUT = 1302
    PROTOCOL_ERROR = 1303


class TidyError(Exception):
    """Base exception for all tidyd errors.

    Attributes:
        message: Human-readable error message.
        error_code: Programmatic error code.
        details: Additional error context.
        cause: Original exception that caused this error.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        details: Optional[dict] = None,
        cause: Optional[Exception] = None
    ):
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            error_code: Programmatic error code.
            details: Additional context as key-value pairs.
            cause: Original exception if wrapping another error.
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        """Return a formatted error string."""
        result = f"[{self.error_code.name}] {self.message}"
        if self.details:
            result += f" | Details: {self.details}"
        if self.cause:
            result += f" | Caused by: {type(self.cause).__name__}: {self.cause}"
        return result

    def to_dict(self) -> dict:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "error_code": self.error_code.value,
            "error_name": self.error_code.name,
            "details": self.details,
            "cause": str(self.cause) if self.cause else None,
        }


class ConfigurationError(TidyError):
    """Raised when the configuration cannot be used at all.

    Examples:
        - Configuration file is not valid YAML
        - Unknown action type
        - Invalid setting values
    """

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type
        super().__init__(
            message,
            error_code=ErrorCode.CONFIGURATION_ERROR,
            details=details,
            **kwargs
        )


class RuleError(TidyError):
    """Raised when a single rule is unusable.

    Rule errors are scoped to the offending rule: it is skipped and the
    remaining rules keep working.

    Examples:
        - Name regex does not compile
        - Template references an unknown token
    """

    def __init__(
        self,
        message: str,
        rule_name: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.INVALID_REGEX,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if rule_name:
            details["rule"] = rule_name
        super().__init__(
            message,
            error_code=error_code,
            details=details,
            **kwargs
        )


class ActionError(TidyError):
    """Raised when an action cannot be carried out.

    Examples:
        - Destination directory missing and create_dirs disabled
        - External command exited non-zero or timed out
        - Source vanished before the action ran
    """

    def __init__(
        self,
        message: str,
        file_path: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.ACTION_FAILED,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if file_path:
            details["file_path"] = file_path
        super().__init__(
            message,
            error_code=error_code,
            details=details,
            **kwargs
        )


class IPCError(TidyError):
    """Raised by the client side of the daemon control protocol.

    Examples:
        - No daemon listening on the configured port
        - Scheduling loop did not answer in time
    """

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.DAEMON_UNAVAILABLE,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if endpoint:
            details["endpoint"] = endpoint
        super().__init__(
            message,
            error_code=error_code,
            details=details,
            **kwargs
        )
