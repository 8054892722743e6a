"""
Unit tests for the event log ring buffer.
"""

import threading
import time

import pytest

from tidyd.utils.event_log import EventLog, LogEntry, LogLevel


class TestEventLog:
    """Tests for EventLog."""

    def test_append_assigns_increasing_ids(self):
        log = EventLog()

        first = log.info("one")
        second = log.success("two")

        assert (first.id, second.id) == (1, 2)
        assert second.level == LogLevel.SUCCESS
        assert log.last_id == 2
        assert len(log) == 2

    def test_overflow_evicts_oldest(self):
        """Test retention + k appends keep the newest entries in order."""
        log = EventLog(capacity=5)

        for i in range(8):
            log.info(f"entry {i}")

        entries = log.snapshot()
        assert len(entries) == 5
        assert [e.message for e in entries] == [f"entry {i}" for i in range(3, 8)]
        assert [e.id for e in entries] == [4, 5, 6, 7, 8]

    def test_since(self):
        log = EventLog()
        for level in (LogLevel.INFO, LogLevel.WARNING, LogLevel.ERROR):
            log.append(level, level.value)

        assert [e.message for e in log.since(1)] == ["warning", "error"]
        assert log.since(3) == []
        assert len(log.since()) == 3

    def test_clear_keeps_ids_increasing(self):
        log = EventLog()
        log.info("a")
        log.info("b")

        log.clear()
        entry = log.info("c")

        assert len(log) == 1
        assert entry.id == 3

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            EventLog(capacity=0)

    def test_resize_keeps_newest(self):
        log = EventLog(capacity=10)
        for i in range(6):
            log.info(str(i))

        log.resize(3)

        assert log.capacity == 3
        assert [e.message for e in log.snapshot()] == ["3", "4", "5"]

    def test_wait_for_times_out(self):
        log = EventLog()
        log.info("old")

        start = time.monotonic()
        entries = log.wait_for(1, timeout=0.2)

        assert entries == []
        assert time.monotonic() - start >= 0.15

    def test_wait_for_wakes_on_append(self):
        log = EventLog()
        timer = threading.Timer(0.1, log.warning, args=("late",))
        timer.start()

        try:
            entries = log.wait_for(0, timeout=5)
        finally:
            timer.cancel()

        assert [e.message for e in entries] == ["late"]

    def test_entry_dict_round_trip(self):
        entry = EventLog().error("Failed to move a.txt")

        restored = LogEntry.from_dict(entry.to_dict())

        assert restored == entry
        assert entry.to_dict()["level"] == "error"
