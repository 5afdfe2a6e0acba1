"""Tests for timestamp helpers."""

from datetime import datetime, timedelta, timezone

from temporal_bridge.time_utils import parse_timestamp, to_iso, utc_now


class TestToIso:
    def test_z_suffix_and_milliseconds(self):
        dt = datetime(2025, 1, 5, 10, 0, 0, 123456, tzinfo=timezone.utc)

        assert to_iso(dt) == "2025-01-05T10:00:00.123Z"

    def test_naive_treated_as_utc(self):
        assert to_iso(datetime(2025, 1, 5, 10, 0, 0)) == "2025-01-05T10:00:00.000Z"

    def test_offset_converted(self):
        dt = datetime(2025, 1, 5, 12, 0, 0, tzinfo=timezone(timedelta(hours=2)))

        assert to_iso(dt) == "2025-01-05T10:00:00.000Z"


class TestParseTimestamp:
    def test_z_suffix(self):
        assert parse_timestamp("2025-01-05T10:00:00.000Z") == datetime(2025, 1, 5, 10, tzinfo=timezone.utc)

    def test_offset(self):
        assert parse_timestamp("2025-01-05T12:00:00+02:00") == datetime(2025, 1, 5, 10, tzinfo=timezone.utc)

    def test_naive_is_utc(self):
        parsed = parse_timestamp("2025-01-05T10:00:00")

        assert parsed.tzinfo is not None
        assert parsed == datetime(2025, 1, 5, 10, tzinfo=timezone.utc)

    def test_date_only(self):
        assert parse_timestamp("2025-01-05") == datetime(2025, 1, 5, tzinfo=timezone.utc)

    def test_round_trip(self):
        now = utc_now().replace(microsecond=0)

        assert parse_timestamp(to_iso(now)) == now

    def test_rejects_garbage(self):
        assert parse_timestamp("not a date") is None
        assert parse_timestamp("") is None
        assert parse_timestamp("   ") is None

    def test_rejects_non_strings(self):
        assert parse_timestamp(None) is None
        assert parse_timestamp(1736071200) is None
