"""Tests for the monotonic change-log clock and timestamp helpers."""
from datetime import datetime, timedelta, timezone

from contasync.sync.clock import MonotonicClock, format_timestamp, parse_timestamp

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestMonotonicClock:
    def test_follows_wall_clock_when_it_advances(self):
        now = {"value": T0}
        clock = MonotonicClock(wall=lambda: now["value"])
        assert clock.now() == T0
        now["value"] = T0 + timedelta(seconds=5)
        assert clock.now() == T0 + timedelta(seconds=5)

    def test_stalled_wall_clock_still_increases(self):
        clock = MonotonicClock(wall=lambda: T0)
        first, second = clock.now(), clock.now()
        assert second > first

    def test_wall_clock_stepping_back_is_clamped(self):
        now = {"value": T0}
        clock = MonotonicClock(wall=lambda: now["value"])
        first = clock.now()
        now["value"] = T0 - timedelta(hours=1)
        assert clock.now() > first

    def test_observe_moves_floor_forward(self):
        clock = MonotonicClock(wall=lambda: T0)
        clock.observe(T0 + timedelta(days=1))
        assert clock.now() > T0 + timedelta(days=1)

    def test_naive_wall_clock_is_treated_as_utc(self):
        clock = MonotonicClock(wall=lambda: datetime(2025, 3, 1, 12, 0))
        assert clock.now().tzinfo is not None


class TestTimestampHelpers:
    def test_format_uses_milliseconds_and_z(self):
        assert format_timestamp(T0) == "2025-03-01T12:00:00.000Z"

    def test_parse_z_suffix(self):
        assert parse_timestamp("2025-03-01T12:00:00.000Z") == T0

    def test_parse_offset(self):
        assert parse_timestamp("2025-03-01T08:00:00-04:00") == T0

    def test_parse_absent(self):
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None

    def test_parse_naive_datetime(self):
        assert parse_timestamp(datetime(2025, 3, 1, 12, 0)) == T0
