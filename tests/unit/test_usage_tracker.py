"""
Unit tests for usage_tracker.
"""

import os
import threading
from datetime import datetime

import pytest

from agentdeck.usage_tracker import (
    FIVE_HOURS,
    PLAN_LIMITS,
    UsageSnapshot,
    UsageTracker,
    calculate_usage,
    month_start,
)
from fixtures import USAGE_SCREEN, FakeProbe, assistant_entry, user_entry, write_log

# Mid-month, so "six hours ago" is still this month
NOW = datetime(2026, 3, 15, 12, 0, 0).timestamp()
DAY = 24 * 60 * 60


def touch(path, ts):
    os.utime(path, (ts, ts))
    return path


class FakeClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


class RaisingProbe:
    def __init__(self):
        self.calls = 0

    def run(self, keystrokes, cwd=None, timeout=15.0):
        self.calls += 1
        raise OSError("no pty")


class TestMonthStart:
    def test_first_of_month_midnight(self):
        start = datetime.fromtimestamp(month_start(NOW))
        assert (start.day, start.hour, start.minute) == (1, 0, 0)
        assert start.month == 3


class TestCalculateUsage:
    """Counting completed turns in the logs."""

    def test_counts_windows(self, projects_dir):
        path = write_log(projects_dir, "/work/a", [
            assistant_entry(NOW - 60),
            assistant_entry(NOW - 3600),
            assistant_entry(NOW - 6 * 3600),
            assistant_entry(NOW - 20 * DAY),  # last month
            assistant_entry(NOW - 120, stop_reason=None),
            user_entry(NOW - 30),
        ])
        touch(path, NOW)

        usage = calculate_usage(projects_dir, NOW)

        assert usage.five_hour_messages == 2
        assert usage.monthly_messages == 3
        assert usage.five_hour_newest == pytest.approx(NOW - 60)

    def test_sums_across_projects(self, projects_dir):
        for cwd in ("/work/a", "/work/b"):
            touch(write_log(projects_dir, cwd, [assistant_entry(NOW - 10)]), NOW)

        assert calculate_usage(projects_dir, NOW).five_hour_messages == 2

    def test_skips_files_untouched_this_month(self, projects_dir):
        path = write_log(projects_dir, "/work/a", [assistant_entry(NOW - 10)])
        touch(path, NOW - 30 * DAY)

        usage = calculate_usage(projects_dir, NOW)

        assert usage.five_hour_messages == 0
        assert usage.monthly_messages == 0

    def test_tolerates_bad_lines(self, projects_dir):
        path = write_log(
            projects_dir, "/work/a", [assistant_entry(NOW - 10)],
            extra_lines=["{oops", '{"message": {"role": "assistant"}}'],
        )
        touch(path, NOW)
        assert calculate_usage(projects_dir, NOW).five_hour_messages == 1

    def test_empty(self, projects_dir):
        assert calculate_usage(projects_dir, NOW) == UsageSnapshot()


class TestUsageSnapshot:
    def test_to_dict(self):
        data = UsageSnapshot(3, NOW, 10).to_dict()
        assert data["five_hour"]["messages"] == 3
        assert data["five_hour"]["newest_timestamp"] == datetime.fromtimestamp(NOW).isoformat()
        assert data["monthly"] == {"messages": 10}

    def test_to_dict_without_messages(self):
        assert UsageSnapshot().to_dict()["five_hour"]["newest_timestamp"] is None


class TestGetUsage:
    """Estimate tier caching."""

    def test_cached_within_ttl(self, projects_dir):
        clock = FakeClock()
        tracker = UsageTracker(projects_dir, clock=clock, estimate_ttl=30)
        touch(write_log(projects_dir, "/work/a", [assistant_entry(NOW - 10)]), NOW)
        assert tracker.get_usage().five_hour_messages == 1

        touch(write_log(projects_dir, "/work/b", [assistant_entry(NOW - 5)]), NOW)
        clock.now += 10
        assert tracker.get_usage().five_hour_messages == 1

        clock.now += 30
        assert tracker.get_usage().five_hour_messages == 2

    def test_window_slides_with_clock(self, projects_dir):
        clock = FakeClock()
        tracker = UsageTracker(projects_dir, clock=clock, estimate_ttl=0)
        touch(write_log(projects_dir, "/work/a", [assistant_entry(NOW - 10)]), NOW)

        clock.now += FIVE_HOURS
        assert tracker.get_usage().five_hour_messages == 0
        assert tracker.get_usage().monthly_messages == 1


class TestGetAccurateUsage:
    """Verified tier: caching and single-flight probing."""

    def test_probe_result_is_cached(self):
        clock = FakeClock()
        probe = FakeProbe(USAGE_SCREEN)
        tracker = UsageTracker(probe=probe, clock=clock, verified_ttl=240)

        first = tracker.get_accurate_usage()
        clock.now += 100
        second = tracker.get_accurate_usage()

        assert first.session_percent == 21
        assert second is first
        assert len(probe.calls) == 1

    def test_refetch_after_ttl(self):
        clock = FakeClock()
        probe = FakeProbe(USAGE_SCREEN)
        tracker = UsageTracker(probe=probe, clock=clock, verified_ttl=240)

        tracker.get_accurate_usage()
        clock.now += 241
        tracker.get_accurate_usage()

        assert len(probe.calls) == 2

    def test_no_probe(self):
        tracker = UsageTracker(probe=None)
        assert tracker.get_accurate_usage() is None

    def test_failed_probe_keeps_previous_value(self):
        clock = FakeClock()
        probe = FakeProbe(USAGE_SCREEN)
        tracker = UsageTracker(probe=probe, clock=clock, verified_ttl=240)
        good = tracker.get_accurate_usage()

        probe.output = "Something went wrong"
        clock.now += 300
        assert tracker.get_accurate_usage() is good

        probe.output = None
        assert tracker.get_accurate_usage() is good
        assert len(probe.calls) == 3

    def test_probe_error_returns_cached(self):
        probe = RaisingProbe()
        tracker = UsageTracker(probe=probe)
        assert tracker.get_accurate_usage() is None
        # The failed attempt does not leave a fetch marked as running
        assert tracker.get_accurate_usage() is None
        assert probe.calls == 2

    def test_single_flight(self):
        probe = FakeProbe(USAGE_SCREEN, block=True)
        tracker = UsageTracker(probe=probe)
        results = []

        worker = threading.Thread(target=lambda: results.append(tracker.get_accurate_usage()))
        worker.start()
        assert probe.started.wait(timeout=2.0)

        # A second caller while the probe is running gets the old value at once
        assert tracker.get_accurate_usage() is None

        probe.release.set()
        worker.join(timeout=2.0)

        assert len(probe.calls) == 1
        assert results[0].session_percent == 21
        assert tracker.get_accurate_usage() is results[0]
        assert len(probe.calls) == 1

    def test_probe_uses_usage_keystrokes(self):
        probe = FakeProbe(USAGE_SCREEN)
        UsageTracker(probe=probe).get_accurate_usage()
        keystrokes, cwd = probe.calls[0]
        assert keystrokes[0][0] == b"/status"
        assert cwd is None


def test_plan_limits():
    assert PLAN_LIMITS["pro"] < PLAN_LIMITS["max100"] < PLAN_LIMITS["max200"]
