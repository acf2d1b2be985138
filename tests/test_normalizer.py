"""Tests for the multi-format date/time resolver."""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from schedule_agent.agent.normalizer import (
    DateTimeResolver,
    add_local_days,
    now_in_timezone,
    resolve_datetime,
    resolve_timezone,
    start_of_day,
)
from schedule_agent.config import DEFAULT_TIMEZONE
from schedule_agent.errors import DateParseError


UTC = timezone.utc
TOKYO = ZoneInfo("Asia/Tokyo")
NEW_YORK = ZoneInfo("America/New_York")


class TestZoneQualifiedInput:
    """Inputs that carry an offset never consult the local zone."""

    @pytest.mark.parametrize("text,expected", [
        ("2025-07-01T15:30:00+09:00", datetime(2025, 7, 1, 6, 30, tzinfo=UTC)),
        ("2025-07-01T06:30:00Z", datetime(2025, 7, 1, 6, 30, tzinfo=UTC)),
        ("2025-07-01 06:30:00z", datetime(2025, 7, 1, 6, 30, tzinfo=UTC)),
        ("2025-07-01T15:30:00.250+09:00", datetime(2025, 7, 1, 6, 30, 0, 250000, tzinfo=UTC)),
        ("2025-07-01T15:30:00+0900", datetime(2025, 7, 1, 6, 30, tzinfo=UTC)),
        ("2025-07-01T15:30+09:00", datetime(2025, 7, 1, 6, 30, tzinfo=UTC)),
        ("2025-07-01 08:30-02:00", datetime(2025, 7, 1, 10, 30, tzinfo=UTC)),
    ])
    def test_offset_wins_over_local_zone(self, text, expected):
        assert resolve_datetime(text, NEW_YORK) == expected

    def test_result_is_utc(self):
        result = resolve_datetime("2025-07-01T15:30:00+09:00", TOKYO)
        assert result.utcoffset().total_seconds() == 0

    def test_offset_inside_dst_gap_is_not_ambiguous(self):
        result = resolve_datetime("2025-03-09T02:30:00-05:00", NEW_YORK)
        assert result == datetime(2025, 3, 9, 7, 30, tzinfo=UTC)


class TestZoneNaiveInput:
    """Wall-clock inputs are read in the local zone."""

    def test_dash_form_in_jst(self):
        assert resolve_datetime("2025-07-01 15:30", "Asia/Tokyo") == datetime(
            2025, 7, 1, 6, 30, tzinfo=UTC)

    @pytest.mark.parametrize("text", [
        "2025-07-01T15:30",
        "2025-07-01T15:30:00",
        "2025-07-01 15:30:00",
        "2025/07/01 15:30",
        "2025/07/01 15:30:00",
        "2025年07月01日 15:30",
        "2025年7月1日 15時30分",
        "  2025-07-01   15:30  ",
    ])
    def test_supported_forms(self, text):
        assert resolve_datetime(text, TOKYO) == datetime(2025, 7, 1, 6, 30, tzinfo=UTC)

    @pytest.mark.parametrize("text", ["2025-07-01", "2025/07/01", "2025年07月01日"])
    def test_date_only_is_local_midnight(self, text):
        assert resolve_datetime(text, TOKYO) == datetime(2025, 6, 30, 15, 0, tzinfo=UTC)

    def test_seconds_are_kept(self):
        assert resolve_datetime("2025-07-01T15:30:45", TOKYO) == datetime(
            2025, 7, 1, 6, 30, 45, tzinfo=UTC)


class TestDaylightSaving:
    """Local times that DST skips or repeats are refused."""

    def test_spring_forward_gap(self):
        with pytest.raises(DateParseError) as excinfo:
            resolve_datetime("2025-03-09 02:30", NEW_YORK)
        assert excinfo.value.reason == "ambiguous_local_time"

    def test_fall_back_fold(self):
        with pytest.raises(DateParseError) as excinfo:
            resolve_datetime("2025-11-02 01:30", NEW_YORK)
        assert excinfo.value.reason == "ambiguous_local_time"
        assert excinfo.value.kind == "date_parse"

    def test_normal_day_in_dst_zone(self):
        assert resolve_datetime("2025-07-04 12:00", NEW_YORK) == datetime(
            2025, 7, 4, 16, 0, tzinfo=UTC)


class TestUnrecognized:

    @pytest.mark.parametrize("text", ["next tuesday", "", "   ", "15:30", "2025-13-01", "07/01/2025"])
    def test_unknown_formats_fail(self, text):
        with pytest.raises(DateParseError) as excinfo:
            resolve_datetime(text, TOKYO)
        assert excinfo.value.reason == "unrecognized"

    def test_error_carries_text(self):
        with pytest.raises(DateParseError) as excinfo:
            resolve_datetime("whenever", TOKYO)
        assert excinfo.value.text == "whenever"

    @pytest.mark.parametrize("text", [
        "0001-01-01 00:00",
        "0001-01-01T00:00:00+09:00",
        "9999-12-31T23:59:59-05:00",
    ])
    def test_out_of_range_instant(self, text):
        with pytest.raises(DateParseError) as excinfo:
            resolve_datetime(text, TOKYO)
        assert excinfo.value.reason == "unrecognized"
        assert excinfo.value.text == text


class TestRoundTrip:
    """Formatting an instant in a supported layout and parsing it gives it back."""

    INSTANT = datetime(2025, 12, 31, 23, 59, 58, tzinfo=UTC)

    @pytest.mark.parametrize("fmt", [
        "%Y-%m-%dT%H:%M:%S",
        "%Y-%m-%d %H:%M:%S",
        "%Y/%m/%d %H:%M:%S",
        "%Y-%m-%dT%H:%M:%S%z",
        "%Y-%m-%dT%H:%M:%S.%f%z",
    ])
    def test_format_then_resolve(self, fmt):
        text = self.INSTANT.astimezone(TOKYO).strftime(fmt)
        assert resolve_datetime(text, TOKYO) == self.INSTANT


class TestResolverHelpers:

    def test_resolver_binds_zone(self):
        resolver = DateTimeResolver("Asia/Tokyo")
        assert resolver.resolve("2025-07-01 15:30") == datetime(2025, 7, 1, 6, 30, tzinfo=UTC)
        assert resolver.to_local(datetime(2025, 7, 1, 6, 30, tzinfo=UTC)).hour == 15

    def test_resolve_optional_blank(self):
        resolver = DateTimeResolver(TOKYO)
        assert resolver.resolve_optional(None) is None
        assert resolver.resolve_optional("  ") is None

    def test_resolve_timezone_falls_back(self):
        assert resolve_timezone("Not/AZone") == resolve_timezone(None) == DEFAULT_TIMEZONE
        assert resolve_timezone("Europe/Paris") == "Europe/Paris"

    def test_start_of_day(self):
        instant = datetime(2025, 7, 1, 6, 30, tzinfo=UTC)
        assert start_of_day(instant, TOKYO) == datetime(2025, 6, 30, 15, 0, tzinfo=UTC)

    def test_add_local_days_keeps_wall_clock_across_dst(self):
        before = datetime(2025, 3, 8, 17, 0, tzinfo=UTC)  # 12:00 EST
        after = add_local_days(before, 1, NEW_YORK)
        assert after.astimezone(NEW_YORK).hour == 12
        assert (after - before).total_seconds() == 23 * 3600

    def test_now_in_timezone_is_aware(self):
        now = now_in_timezone("Asia/Tokyo")
        assert now.utcoffset().total_seconds() == 9 * 3600
