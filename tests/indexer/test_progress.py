"""Tests for scan progress tracking."""

import logging

import pytest

from mediavault.indexer.progress import ProgressTracker


class TestProgressTracker:
    """Tests for ProgressTracker."""

    def test_initial_state(self):
        tracker = ProgressTracker()
        assert tracker.fraction == 0.0
        progress = tracker.get_progress()
        assert progress['files_processed'] == 0
        assert progress['percentage'] == 0.0
        assert progress['eta_seconds'] == 0.0

    def test_fraction_follows_growing_estimate(self):
        tracker = ProgressTracker()
        tracker.discover(4)
        tracker.increment(2)
        assert tracker.fraction == pytest.approx(0.5)

        tracker.discover(4)
        assert tracker.fraction == pytest.approx(0.25)

    def test_fraction_is_capped(self):
        tracker = ProgressTracker()
        tracker.discover(1)
        tracker.increment(3)
        assert tracker.fraction == 1.0
        assert tracker.get_progress()['remaining_files'] == 0

    def test_logs_every_interval(self, caplog):
        tracker = ProgressTracker(log_interval=2, label="alice")
        tracker.discover(4)

        with caplog.at_level(logging.INFO, logger="mediavault.indexer.progress"):
            for _ in range(4):
                tracker.increment()

        lines = [r.getMessage() for r in caplog.records if r.getMessage().startswith("Progress:")]
        assert len(lines) == 2
        assert "'scan': 'alice'" in lines[0]

    def test_final_summary(self, caplog):
        tracker = ProgressTracker(label="bob")
        with caplog.at_level(logging.INFO, logger="mediavault.indexer.progress"):
            tracker.log_final_summary()
        assert any("Scan finished" in r.getMessage() for r in caplog.records)

    @pytest.mark.parametrize("seconds,expected", [
        (0, "0s"),
        (59.9, "59s"),
        (61, "1m 1s"),
        (3725, "1h 2m 5s"),
    ])
    def test_format_time(self, seconds, expected):
        assert ProgressTracker._format_time(seconds) == expected
