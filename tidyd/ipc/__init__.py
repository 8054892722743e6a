"""IPC module: daemon control server, client and shared protocol types."""

from .protocol import (
    ControlKind,
    ControlRequest,
    ControlResult,
    DaemonStatus,
    RuleSummary,
)
from .server import IPCServer, IPCRequestHandler
from .client import DaemonClient

__all__ = [
    "ControlKind",
    "ControlRequest",
    "ControlResult",
    "DaemonStatus",
    "RuleSummary",
    "IPCServer",
    "IPCRequestHandler",
    "DaemonClient",
]
