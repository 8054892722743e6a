"""
Unit tests for the scan tracker.
"""

import pytest

from tidyd.monitoring.tracker import ScanTracker


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def scan(tracker, *sightings):
    """Run one scan cycle and return the paths that became eligible."""
    tracker.begin_cycle()
    eligible = [path for path, sig in sightings if tracker.observe(path, sig)]
    tracker.end_cycle()
    return eligible


class TestStability:
    """Tests for the debounce rule."""

    def test_stable_path_eligible_exactly_once(self):
        tracker = ScanTracker()

        assert scan(tracker, ("/w/a.tmp", (10, 1))) == []
        assert scan(tracker, ("/w/a.tmp", (10, 1))) == ["/w/a.tmp"]
        assert scan(tracker, ("/w/a.tmp", (10, 1))) == []
        assert scan(tracker, ("/w/a.tmp", (10, 1))) == []

    def test_growing_file_never_eligible(self):
        """Test a file whose size changes every scan is never handed out."""
        tracker = ScanTracker()

        for size in range(1, 20):
            assert scan(tracker, ("/w/download.iso", (size * 1024, size))) == []

    def test_eligible_again_after_change(self):
        tracker = ScanTracker()
        scan(tracker, ("/w/a", (1, 1)))
        assert scan(tracker, ("/w/a", (1, 1))) == ["/w/a"]

        assert scan(tracker, ("/w/a", (2, 2))) == []
        assert scan(tracker, ("/w/a", (2, 2))) == ["/w/a"]

    def test_mtime_change_resets(self):
        tracker = ScanTracker(stability_threshold=3)

        scan(tracker, ("/w/a", (1, 1)))
        scan(tracker, ("/w/a", (1, 1)))
        scan(tracker, ("/w/a", (1, 2)))

        assert tracker.state("/w/a").stable_scans == 1
        assert scan(tracker, ("/w/a", (1, 2))) == []
        assert scan(tracker, ("/w/a", (1, 2))) == ["/w/a"]

    def test_threshold_one(self):
        tracker = ScanTracker(stability_threshold=1)

        assert scan(tracker, ("/w/a", (1, 1))) == ["/w/a"]
        assert scan(tracker, ("/w/a", (2, 2))) == ["/w/a"]

    def test_invalid_threshold(self):
        with pytest.raises(ValueError):
            ScanTracker(stability_threshold=0)

    def test_duplicate_sighting_in_one_cycle(self):
        """Test a path listed by two overlapping watches counts once."""
        tracker = ScanTracker()
        scan(tracker, ("/w/a", (1, 1)))

        assert scan(tracker, ("/w/a", (1, 1)), ("/w/a", (1, 1))) == ["/w/a"]
        assert tracker.state("/w/a").stable_scans == 2


class TestEviction:
    """Tests for forgetting vanished paths."""

    def test_one_missed_scan_is_tolerated(self):
        tracker = ScanTracker()
        scan(tracker, ("/w/a", (1, 1)))
        scan(tracker)

        assert "/w/a" in tracker
        assert scan(tracker, ("/w/a", (1, 1))) == ["/w/a"]

    def test_two_missed_scans_evict(self):
        tracker = ScanTracker()
        scan(tracker, ("/w/a", (1, 1)))
        scan(tracker)

        tracker.begin_cycle()
        evicted = tracker.end_cycle()

        assert evicted == ["/w/a"]
        assert "/w/a" not in tracker
        assert len(tracker) == 0

    def test_reappearing_after_eviction_starts_over(self):
        tracker = ScanTracker()
        scan(tracker, ("/w/a", (1, 1)))
        scan(tracker, ("/w/a", (1, 1)))
        scan(tracker)
        scan(tracker)

        assert scan(tracker, ("/w/a", (1, 1))) == []
        assert scan(tracker, ("/w/a", (1, 1))) == ["/w/a"]

    def test_forget(self):
        tracker = ScanTracker()
        scan(tracker, ("/w/a", (1, 1)), ("/w/b", (1, 1)))

        tracker.forget("/w/a")
        assert "/w/a" not in tracker
        assert "/w/b" in tracker
        assert len(tracker) == 1

    def test_configure_keeps_evaluated_paths(self):
        tracker = ScanTracker()
        scan(tracker, ("/w/a", (1, 1)))
        assert scan(tracker, ("/w/a", (1, 1)), ("/w/b", (1, 1))) == ["/w/a"]

        tracker.configure(stability_threshold=3)

        assert scan(tracker, ("/w/a", (1, 1)), ("/w/b", (1, 1))) == []
        assert scan(tracker, ("/w/a", (1, 1)), ("/w/b", (1, 1))) == ["/w/b"]
        assert tracker.state("/w/a").evaluated

        with pytest.raises(ValueError):
            tracker.configure(stability_threshold=0)


class TestFeedbackGuard:
    """Tests for adopted destinations and cooldown."""

    def test_adopted_path_is_not_evaluated(self):
        tracker = ScanTracker()

        tracker.adopt("/w/doc-1.txt", (5, 5))

        for _ in range(3):
            assert scan(tracker, ("/w/doc-1.txt", (5, 5))) == []

    def test_adopted_path_eligible_after_user_edit(self):
        tracker = ScanTracker()
        tracker.adopt("/w/doc-1.txt", (5, 5))

        scan(tracker, ("/w/doc-1.txt", (6, 6)))

        assert scan(tracker, ("/w/doc-1.txt", (6, 6))) == ["/w/doc-1.txt"]

    def test_cooldown_delays_reevaluation(self):
        clock = FakeClock()
        tracker = ScanTracker(stability_threshold=1, cooldown_secs=30, clock=clock)

        assert scan(tracker, ("/w/a", (1, 1))) == ["/w/a"]
        tracker.record_action("/w/a")

        clock.now += 10
        assert scan(tracker, ("/w/a", (2, 2))) == []

        clock.now += 25
        assert scan(tracker, ("/w/a", (2, 2))) == ["/w/a"]

    def test_record_action_for_unknown_path(self):
        tracker = ScanTracker()

        tracker.record_action("/w/unknown")

        assert "/w/unknown" not in tracker
