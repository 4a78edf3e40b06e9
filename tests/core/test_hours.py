"""
Tests for hour slot arithmetic.
"""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from cronlog.core.hours import (
    day_hour_ranges,
    format_hour_range,
    hour_window,
    normalize_hour_range,
    parse_date,
    parse_hour_range,
    previous_hour_slot,
    today,
)


class TestHourRanges:
    """Test the 24-slot partition of a day."""

    def test_day_has_24_contiguous_slots(self):
        ranges = day_hour_ranges()

        assert len(ranges) == 24
        assert ranges[0] == "00-01"
        assert ranges[13] == "13-14"
        assert ranges[-1] == "23-00"
        assert len(set(ranges)) == 24

    def test_slots_cover_the_day_without_overlap(self):
        tz = ZoneInfo("UTC")
        d = date(2025, 8, 25)
        windows = [hour_window(d, hr, tz) for hr in day_hour_ranges()]

        assert windows[0][0] == datetime(2025, 8, 25, 0, tzinfo=tz)
        assert windows[-1][1] == datetime(2025, 8, 26, 0, tzinfo=tz)
        for (_, end), (next_start, _) in zip(windows, windows[1:]):
            assert end == next_start

    def test_format_rejects_out_of_range(self):
        with pytest.raises(ValueError):
            format_hour_range(24)

    @pytest.mark.parametrize("bad", ["14-16", "24-01", "1-2", "", "ab-cd"])
    def test_parse_rejects_malformed(self, bad):
        with pytest.raises(ValueError):
            parse_hour_range(bad)

    def test_normalize_accepts_hour_or_key(self):
        assert normalize_hour_range(14) == "14-15"
        assert normalize_hour_range("9") == "09-10"
        assert normalize_hour_range("23-00") == "23-00"


class TestWindows:
    """Test window computation in a configured timezone."""

    def test_window_in_non_utc_timezone(self):
        tz = ZoneInfo("Asia/Kolkata")
        start, end = hour_window(date(2025, 8, 25), "14-15", tz)

        assert start.astimezone(timezone.utc) == datetime(2025, 8, 25, 8, 30, tzinfo=timezone.utc)
        assert (end - start).total_seconds() == 3600

    def test_previous_hour_slot(self):
        tz = ZoneInfo("UTC")
        now = datetime(2025, 8, 25, 15, 0, 5, tzinfo=timezone.utc)

        assert previous_hour_slot(tz, now) == (date(2025, 8, 25), "14-15")

    def test_previous_hour_slot_at_midnight_is_yesterday(self):
        tz = ZoneInfo("UTC")
        now = datetime(2025, 8, 26, 0, 0, 30, tzinfo=timezone.utc)

        assert previous_hour_slot(tz, now) == (date(2025, 8, 25), "23-00")

    def test_today_uses_timezone(self):
        now = datetime(2025, 8, 25, 22, 0, tzinfo=timezone.utc)

        assert today(ZoneInfo("Asia/Tokyo"), now) == date(2025, 8, 26)
        assert today(ZoneInfo("UTC"), now) == date(2025, 8, 25)

    def test_parse_date(self):
        assert parse_date("2025-08-25") == date(2025, 8, 25)
        assert parse_date(datetime(2025, 8, 25, 12)) == date(2025, 8, 25)
