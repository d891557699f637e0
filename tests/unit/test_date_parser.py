"""
Unit tests for date_parser.py - client date/time parsing in the business timezone.

Tests coverage:
- ISO and day-first dates
- HH:MM and HH:MM:SS times
- Timezone attachment and conversion
- format_hhmm() and format_date_spanish()
- Error handling
"""

from datetime import UTC, date, datetime, time

import pytest

from booking.utils.date_parser import (
    combine_local,
    format_date_spanish,
    format_hhmm,
    get_business_tz,
    parse_date,
    parse_time,
    to_local,
)


class TestParseDate:
    def test_iso_date(self):
        assert parse_date("2026-03-16") == date(2026, 3, 16)

    def test_day_first_date(self):
        assert parse_date("16/03/2026") == date(2026, 3, 16)

    def test_surrounding_whitespace(self):
        assert parse_date("  2026-03-16 ") == date(2026, 3, 16)

    def test_date_passthrough(self):
        assert parse_date(date(2026, 3, 16)) == date(2026, 3, 16)

    def test_datetime_is_truncated_to_date(self):
        assert parse_date(datetime(2026, 3, 16, 10, 30)) == date(2026, 3, 16)

    @pytest.mark.parametrize("value", ["", "   ", "mañana por la tarde", "2026-13-45"])
    def test_invalid_dates(self, value):
        with pytest.raises(ValueError):
            parse_date(value)


class TestParseTime:
    def test_hh_mm(self):
        assert parse_time("09:30") == time(9, 30)

    def test_seconds_are_dropped(self):
        assert parse_time("09:30:45") == time(9, 30)

    def test_time_passthrough(self):
        assert parse_time(time(18, 0)) == time(18, 0)

    @pytest.mark.parametrize("value", ["25:00", "nueve", ""])
    def test_invalid_times(self, value):
        with pytest.raises(ValueError):
            parse_time(value)


class TestTimezone:
    def test_combine_local_attaches_business_tz(self):
        result = combine_local(date(2026, 3, 16), time(10, 0))

        assert result.tzinfo == get_business_tz()
        assert (result.hour, result.minute) == (10, 0)

    def test_to_local_converts_aware_datetimes(self):
        # America/Guayaquil is UTC-5 all year
        result = to_local(datetime(2026, 3, 16, 14, 0, tzinfo=UTC))

        assert result.hour == 9
        assert result.tzinfo == get_business_tz()

    def test_to_local_assumes_naive_is_local(self):
        result = to_local(datetime(2026, 3, 16, 14, 0))

        assert result.hour == 14
        assert result.tzinfo == get_business_tz()

    def test_format_hhmm_uses_business_tz(self):
        assert format_hhmm(datetime(2026, 3, 16, 14, 5, tzinfo=UTC)) == "09:05"


class TestFormatDateSpanish:
    def test_weekday_and_month_names(self):
        assert format_date_spanish(datetime(2026, 3, 16, 10, 0)) == "lunes 16 de marzo"

    def test_sunday(self):
        assert format_date_spanish(datetime(2026, 3, 22)) == "domingo 22 de marzo"
