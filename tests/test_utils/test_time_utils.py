"""
Tests for trading-date resolution and UTC helpers.

What we test
------------
1. Default as-of date: KST close cutoff, weekends and holidays.
2. Explicit dates win without calendar adjustment.
3. UTC formatting / parsing round-trip at second precision.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from stock_recommender.config import MarketConfig
from stock_recommender.utils.time_utils import (
    ensure_utc,
    format_utc,
    is_trading_day,
    parse_utc,
    previous_trading_day,
    resolve_as_of_date,
)

KR = MarketConfig()


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestResolveAsOfDate:
    @pytest.mark.parametrize(
        "now, expected",
        [
            # Saturday 17:00 KST → Friday
            (_utc(2026, 1, 3, 8, 0), date(2026, 1, 2)),
            # Monday 15:00 KST, before close → previous day is Sunday → Friday
            (_utc(2026, 1, 5, 6, 0), date(2026, 1, 2)),
            # Monday 17:00 KST, after close → Monday
            (_utc(2026, 1, 5, 8, 0), date(2026, 1, 5)),
            # Monday 16:00 KST exactly counts as closed
            (_utc(2026, 1, 5, 7, 0), date(2026, 1, 5)),
            # Friday 14:00 KST → Thursday is New Year's Day → Wednesday
            (_utc(2026, 1, 2, 5, 0), date(2025, 12, 31)),
            # Tuesday 01:00 KST, before close → Monday
            (_utc(2026, 1, 5, 16, 0), date(2026, 1, 5)),
        ],
    )
    def test_default_kr_calendar(self, now, expected):
        assert resolve_as_of_date(None, KR, now=now) == expected

    def test_explicit_date_wins(self):
        assert resolve_as_of_date("2026-01-03", KR, now=_utc(2026, 1, 5, 8)) == date(2026, 1, 3)

    def test_explicit_date_invalid(self):
        with pytest.raises(ValueError):
            resolve_as_of_date("03/01/2026", KR)

    def test_naive_now_is_utc(self):
        assert resolve_as_of_date(None, KR, now=datetime(2026, 1, 5, 8, 0)) == date(2026, 1, 5)

    def test_custom_holiday(self):
        market = MarketConfig(holidays=[date(2026, 1, 5)])
        assert resolve_as_of_date(None, market, now=_utc(2026, 1, 5, 8)) == date(2026, 1, 2)

    def test_custom_cutoff_and_offset(self):
        market = MarketConfig(utc_offset_hours=-5, close_cutoff="16:30", holidays=[])
        # 16:00 New York on a Wednesday is before the 16:30 cutoff
        assert resolve_as_of_date(None, market, now=_utc(2026, 1, 7, 21, 0)) == date(2026, 1, 6)


class TestTradingDays:
    def test_weekend(self):
        assert not is_trading_day(date(2026, 1, 3))
        assert is_trading_day(date(2026, 1, 2))

    def test_previous_trading_day_identity(self):
        assert previous_trading_day(date(2026, 1, 5)) == date(2026, 1, 5)

    def test_no_trading_day_found(self):
        start = date(2026, 3, 1)
        holidays = [start - timedelta(days=i) for i in range(20)]
        with pytest.raises(ValueError):
            previous_trading_day(start, holidays)


class TestUtcHelpers:
    def test_format_drops_subseconds(self):
        assert format_utc(_utc(2026, 1, 27, 7, 30, 5).replace(microsecond=999)) == "2026-01-27T07:30:05Z"

    def test_format_converts_offset(self):
        kst = timezone(timedelta(hours=9))
        assert format_utc(datetime(2026, 1, 27, 16, 30, tzinfo=kst)) == "2026-01-27T07:30:00Z"

    def test_parse_z_suffix(self):
        assert parse_utc("2026-01-27T07:30:00Z") == _utc(2026, 1, 27, 7, 30)

    def test_parse_naive_is_utc(self):
        assert parse_utc("2026-01-27T07:30:00").tzinfo == timezone.utc

    def test_ensure_utc(self):
        assert ensure_utc(datetime(2026, 1, 1)).tzinfo == timezone.utc
