"""Tests for the injectable clock and timestamp helpers."""

from datetime import datetime, timedelta, timezone

from warmline.core.clock import (
    ManualClock,
    SystemClock,
    ensure_utc,
    from_db_timestamp,
    to_db_timestamp,
)


class TestManualClock:
    """ManualClock only moves when told to."""

    def test_starts_where_told(self):
        """now() returns the start time."""
        start = datetime(2026, 5, 1, tzinfo=timezone.utc)
        assert ManualClock(start).now() == start

    def test_advance(self):
        """advance() moves forward and returns the new time."""
        clock = ManualClock(datetime(2026, 5, 1, tzinfo=timezone.utc))
        new = clock.advance(days=7, hours=1)
        assert new == datetime(2026, 5, 8, 1, tzinfo=timezone.utc)
        assert clock.now() == new

    def test_naive_start_treated_as_utc(self):
        """A naive start is assumed UTC."""
        clock = ManualClock(datetime(2026, 5, 1))
        assert clock.now().tzinfo is not None


class TestSystemClock:
    def test_is_aware(self):
        assert SystemClock().now().tzinfo is not None


class TestTimestamps:
    """Storage format keeps lexical order equal to time order."""

    def test_fixed_width(self):
        """Whole seconds still carry microseconds."""
        stamp = to_db_timestamp(datetime(2026, 1, 1, tzinfo=timezone.utc))
        assert stamp == "2026-01-01T00:00:00.000000+00:00"

    def test_lexical_order_matches_time(self):
        """A later time always sorts after an earlier one."""
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)
        stamps = [to_db_timestamp(base + timedelta(microseconds=n)) for n in (0, 1, 999999)]
        assert stamps == sorted(stamps)

    def test_other_zones_normalized(self):
        """Offsets are converted to UTC before storage."""
        plus_two = timezone(timedelta(hours=2))
        value = datetime(2026, 1, 1, 2, 0, tzinfo=plus_two)
        assert from_db_timestamp(to_db_timestamp(value)) == datetime(
            2026, 1, 1, 0, 0, tzinfo=timezone.utc
        )

    def test_none_passthrough(self):
        assert from_db_timestamp(None) is None
        assert ensure_utc(datetime(2026, 1, 1)).tzinfo == timezone.utc
