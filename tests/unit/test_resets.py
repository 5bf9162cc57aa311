"""
Unit tests for reset boundaries.

Tests cover:
- Daily reset at 06:00 local, boundary inclusive
- Weekly reset on Monday 06:00
- Water day attribution
- Sprout end dates
- Non-UTC zones
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from trunk.config import SoilConstants
from trunk.derive.resets import daily_reset, end_date, water_day, weekly_reset
from trunk.errors import LedgerError

UTC = timezone.utc


def at(*args):
    return datetime(*args, tzinfo=UTC)


class TestDailyReset:
    """Tests for daily_reset."""

    def test_exactly_at_boundary(self):
        """06:00:00 belongs to the new day."""
        assert daily_reset(at(2026, 1, 15, 6, 0, 0), UTC) == at(2026, 1, 15, 6, 0, 0)

    def test_one_second_before_boundary(self):
        """05:59:59 still belongs to the previous day."""
        assert daily_reset(at(2026, 1, 15, 5, 59, 59), UTC) == at(2026, 1, 14, 6, 0, 0)

    def test_afternoon(self):
        assert daily_reset(at(2026, 1, 15, 18, 30), UTC) == at(2026, 1, 15, 6, 0, 0)

    def test_naive_input_read_as_utc(self):
        assert daily_reset(datetime(2026, 1, 15, 7, 0), UTC) == at(2026, 1, 15, 6, 0, 0)

    def test_fixed_offset_zone(self):
        """The boundary is 06:00 on the local wall clock."""
        est = timezone(timedelta(hours=-5))
        # 10:59 UTC is 05:59 EST: still yesterday's period
        assert daily_reset(at(2026, 1, 15, 10, 59), est) == at(2026, 1, 14, 11, 0)
        assert daily_reset(at(2026, 1, 15, 11, 0), est) == at(2026, 1, 15, 11, 0)

    def test_custom_reset_hour(self):
        constants = SoilConstants(reset_hour=4)
        assert daily_reset(at(2026, 1, 15, 5, 0), UTC, constants) == at(2026, 1, 15, 4, 0)


class TestWeeklyReset:
    """Tests for weekly_reset (2026-01-12 is a Monday)."""

    def test_midweek(self):
        assert weekly_reset(at(2026, 1, 15, 10, 0), UTC) == at(2026, 1, 12, 6, 0)

    def test_monday_at_boundary(self):
        assert weekly_reset(at(2026, 1, 12, 6, 0), UTC) == at(2026, 1, 12, 6, 0)

    def test_monday_before_boundary(self):
        """Monday 05:59:59 is still last week."""
        assert weekly_reset(at(2026, 1, 12, 5, 59, 59), UTC) == at(2026, 1, 5, 6, 0)

    def test_sunday_night(self):
        assert weekly_reset(at(2026, 1, 18, 23, 59), UTC) == at(2026, 1, 12, 6, 0)


class TestWaterDay:
    """Tests for water_day."""

    def test_before_reset_is_previous_date(self):
        assert water_day(at(2026, 1, 15, 5, 59), UTC) == date(2026, 1, 14)

    def test_after_reset_is_same_date(self):
        assert water_day(at(2026, 1, 15, 6, 0), UTC) == date(2026, 1, 15)


class TestEndDate:
    """Tests for end_date."""

    def test_two_weeks_at_nine(self):
        """Planting time plus the season, set to 09:00 local."""
        assert end_date(at(2026, 1, 15, 22, 30), "2w", UTC) == at(2026, 1, 29, 9, 0)

    def test_one_year(self):
        assert end_date(at(2026, 1, 15, 10, 0), "1y", UTC) == at(2027, 1, 15, 9, 0)

    def test_unknown_season(self):
        with pytest.raises(LedgerError):
            end_date(at(2026, 1, 15), "10y", UTC)
