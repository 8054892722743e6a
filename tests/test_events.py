"""
Tests for the native filesystem event backend.
"""

import threading
import time
from unittest import mock

import pytest
from watchdog.events import FileCreatedEvent, FileModifiedEvent

from tidyd.config.settings import Config, GeneralConfig, WatchConfig
from tidyd.monitoring.events import NativeEventTrigger, WakeEventHandler
from tidyd.monitoring.watcher import Watcher
from tidyd.utils.event_log import EventLog


class TestWakeEventHandler:
    """Tests for turning filesystem events into wake-up requests."""

    def test_event_requests_wake(self):
        wake = mock.Mock()
        handler = WakeEventHandler(wake, min_interval=0.0)

        handler.on_any_event(FileCreatedEvent("/w/a.txt"))
        handler.on_any_event(FileModifiedEvent("/w/a.txt"))

        assert wake.call_count == 2

    def test_wakes_are_rate_limited(self):
        wake = mock.Mock()
        handler = WakeEventHandler(wake, min_interval=60.0)

        for i in range(5):
            handler.on_any_event(FileCreatedEvent(f"/w/{i}.txt"))

        assert wake.call_count == 1

    def test_rate_limit_window_elapses(self):
        wake = mock.Mock()
        handler = WakeEventHandler(wake, min_interval=0.2)

        handler.on_any_event(FileCreatedEvent("/w/a.txt"))
        handler.on_any_event(FileCreatedEvent("/w/b.txt"))
        time.sleep(0.3)
        handler.on_any_event(FileCreatedEvent("/w/c.txt"))

        assert wake.call_count == 2

    def test_ignored_names_never_wake(self):
        wake = mock.Mock()
        handler = WakeEventHandler(wake, ignore_patterns=["*.part", "~$*"], min_interval=0.0)

        handler.on_any_event(FileModifiedEvent("/w/movie.mkv.part"))
        handler.on_any_event(FileCreatedEvent("/w/~$report.docx"))
        wake.assert_not_called()

        handler.on_any_event(FileCreatedEvent("/w/movie.mkv"))
        wake.assert_called_once_with()

    def test_passive_events_ignored(self):
        wake = mock.Mock()
        handler = WakeEventHandler(wake, min_interval=0.0)
        event = mock.Mock(event_type="opened", src_path="/w/a.txt")

        handler.on_any_event(event)

        wake.assert_not_called()


class TestNativeEventTrigger:
    """Tests for the watchdog observer lifecycle."""

    def test_missing_roots_are_not_observed(self, workspace):
        trigger = NativeEventTrigger(mock.Mock())
        watches = [WatchConfig(path=workspace), WatchConfig(path=workspace / "missing")]

        try:
            assert trigger.start(watches) == 1
            assert trigger.is_running
        finally:
            trigger.stop()

        assert not trigger.is_running
        assert trigger.observer is None

    def test_watcher_wakes_on_new_file(self, workspace, make_file):
        inbox = workspace / "inbox"
        inbox.mkdir()
        woken = threading.Event()
        config = Config(
            general=GeneralConfig(native_events=True),
            watches=[WatchConfig(path=inbox)],
        )
        watcher = Watcher(config, EventLog(), wake=woken.set)

        assert watcher.start()
        try:
            assert watcher._native is not None
            make_file(inbox / "fresh.txt")
            assert woken.wait(timeout=5.0)
        finally:
            watcher.stop()

        assert watcher._native is None

    @pytest.mark.parametrize("native_events,wake", [(False, lambda: None), (True, None)])
    def test_polling_only(self, workspace, native_events, wake):
        config = Config(
            general=GeneralConfig(native_events=native_events),
            watches=[WatchConfig(path=workspace)],
        )
        watcher = Watcher(config, EventLog(), wake=wake)

        watcher.start()
        try:
            assert watcher._native is None
        finally:
            watcher.stop()
