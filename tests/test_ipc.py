"""
Tests for the HTTP control server and client.
"""

import threading

import httpx
import pytest

from tidyd.ipc.client import DaemonClient
from tidyd.ipc.server import IPCServer
from tidyd.main import TidyDaemon
from tidyd.utils.event_log import LogEntry, LogLevel
from tidyd.utils.exceptions import ErrorCode, IPCError


@pytest.fixture
def client(daemon):
    with DaemonClient(daemon.ipc.url, timeout=5.0) as instance:
        yield instance


class TestReadEndpoints:
    """Tests for status, rules and log queries."""

    def test_status(self, daemon, client):
        status = client.status()

        assert status.state == "stopped"
        assert status.running is False
        assert status.rule_count == 2
        assert status.config_path == str(daemon.config_path)

    def test_rules(self, client):
        rules = client.rules()

        assert [(r.index, r.name, r.enabled, r.action) for r in rules] == [
            (0, "Temp files", True, "delete"),
            (1, "Invoices", True, "move"),
        ]
        assert rules[1].description

    def test_log_after(self, daemon, client):
        first = daemon.event_log.info("first")
        daemon.event_log.warning("second")

        entries = client.log(after=first.id)

        assert [(e.level, e.message) for e in entries] == [(LogLevel.WARNING, "second")]

    def test_invalid_after(self, daemon):
        response = httpx.get(f"{daemon.ipc.url}/api/log", params={"after": "-3"})

        assert response.status_code == 400
        assert response.json()["ok"] is False

    def test_unknown_endpoint(self, daemon):
        response = httpx.get(f"{daemon.ipc.url}/api/nothing-here")

        assert response.status_code == 404


class TestControlEndpoints:
    """Tests for requests routed through the scheduling loop."""

    def test_start_then_rejected_start(self, client):
        first = client.start()
        second = client.start()

        assert first.ok
        assert not second.ok
        assert second.message == "Watcher is running"
        assert client.status().running

    def test_rejection_status_code(self, daemon):
        response = httpx.post(f"{daemon.ipc.url}/api/stop")

        assert response.status_code == 409
        assert response.json() == {"ok": False, "message": "Watcher is not running"}

    def test_toggle(self, client):
        result = client.toggle_rule(0)

        assert result.ok
        assert client.rules()[0].enabled is False
        assert not client.toggle_rule(7).ok

    def test_toggle_non_numeric_index(self, daemon):
        response = httpx.post(f"{daemon.ipc.url}/api/rules/first/toggle")

        assert response.status_code == 400

    def test_clear_log(self, daemon, client):
        daemon.event_log.info("noise")

        assert client.clear_log().ok
        assert client.log() == []

    def test_reload(self, client):
        result = client.reload()

        assert result.ok
        assert result.message.startswith("Configuration reloaded")

    def test_unanswered_request_times_out(self, write_config):
        """Test a control request the loop never answers yields a timeout."""
        path = write_config()
        path.write_text(path.read_text().replace("request_timeout_secs: 5", "request_timeout_secs: 0.3"))
        daemon = TidyDaemon(path)
        # Serve without a scheduling loop
        daemon.ipc.start()
        try:
            with DaemonClient(daemon.ipc.url, timeout=5.0) as client:
                with pytest.raises(IPCError) as exc_info:
                    client.start()
        finally:
            daemon.ipc.stop()

        assert exc_info.value.error_code == ErrorCode.REQUEST_TIMEOUT


class TestLogStream:
    """Tests for the live log stream."""

    def test_backfill_then_live_entries(self, daemon, client):
        daemon.event_log.info("before")
        timer = threading.Timer(0.2, daemon.event_log.success, args=("after",))
        timer.start()

        received = []
        try:
            for entry in client.tail(after=daemon.event_log.last_id - 1):
                received.append(entry.message)
                if len(received) == 2:
                    break
        finally:
            timer.cancel()

        assert received == ["before", "after"]
        assert client.last_id == daemon.event_log.last_id

    def test_missed_entries_counted(self, daemon, client):
        for i in range(3):
            daemon.event_log.info(f"old {i}")
        daemon.event_log.clear()
        latest = daemon.event_log.info("new")

        for entry in client.tail(after=1):
            assert entry.id == latest.id
            break

        assert client.missed_entries == latest.id - 2

    def test_gap_tracking_starts_after_first_entry(self):
        client = DaemonClient("http://127.0.0.1:1")
        try:
            client._track(LogEntry.from_dict({
                "id": 40, "timestamp": "2024-01-01T00:00:00", "level": "info", "message": "x",
            }))
            assert client.missed_entries == 0

            client._track(LogEntry.from_dict({
                "id": 43, "timestamp": "2024-01-01T00:00:01", "level": "info", "message": "y",
            }))
            assert client.missed_entries == 2
            assert client.last_id == 43
        finally:
            client.close()


class TestUnavailableDaemon:
    """Tests for a client with nothing listening."""

    @pytest.fixture
    def closed_url(self):
        server = IPCServer(controller=None, port=0)
        server.start()
        url = server.url
        server.stop()
        return url

    def test_status_raises(self, closed_url):
        with DaemonClient(closed_url, timeout=2.0) as client:
            with pytest.raises(IPCError) as exc_info:
                client.status()

        assert exc_info.value.error_code == ErrorCode.DAEMON_UNAVAILABLE

    def test_tail_raises(self, closed_url):
        with DaemonClient(closed_url, timeout=2.0) as client:
            with pytest.raises(IPCError):
                next(client.tail())
