"""
Shared fixtures for tidyd tests.
"""

import os
import tempfile
import time
from pathlib import Path

import pytest
import yaml

from tidyd.main import TidyDaemon

DAY = 86400


@pytest.fixture
def workspace():
    """Temporary directory removed after the test."""
    with tempfile.TemporaryDirectory() as tmp:
        yield Path(tmp).resolve()


@pytest.fixture
def make_file():
    """Factory creating a file (and its parents), optionally back-dated."""
    def _make(path: Path, content: bytes = b"x", age_days: float = None) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        if age_days is not None:
            mtime = time.time() - age_days * DAY
            os.utime(path, (mtime, mtime))
        return path
    return _make


DEFAULT_RULES = [
    {
        "name": "Temp files",
        "conditions": {"extension": "tmp"},
        "action": {"type": "delete"},
    },
    {
        "name": "Invoices",
        "conditions": {"name_glob": "invoice_*.pdf"},
        "action": {"type": "move", "destination": "invoices"},
    },
]


@pytest.fixture
def write_config(workspace):
    """Factory writing a daemon configuration with an inbox watch."""
    def _write(rules=None, **general) -> Path:
        inbox = workspace / "inbox"
        inbox.mkdir(exist_ok=True)
        settings = {
            "polling_interval_secs": 1,
            "start_daemon_on_launch": False,
        }
        settings.update(general)
        path = workspace / "config.yaml"
        path.write_text(yaml.safe_dump({
            "general": settings,
            "ipc": {"port": 0, "request_timeout_secs": 5},
            "watches": [str(inbox)],
            "rules": DEFAULT_RULES if rules is None else rules,
        }, sort_keys=False))
        return path
    return _write


@pytest.fixture
def daemon(write_config):
    """Daemon serving on an ephemeral port, watcher stopped."""
    instance = TidyDaemon(write_config())
    instance.start()
    yield instance
    instance.shutdown()
