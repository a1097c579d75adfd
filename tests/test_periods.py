"""Tests for period keys and bounds."""

from datetime import date

import pytest

from barsync.aggregate.periods import (
    MONTH,
    WEEK,
    month_of,
    parse_period_key,
    period_keys_for,
    trailing_weeks,
    week_of,
)
from barsync.errors import InvalidInput


class TestWeekOf:
    def test_monday_to_sunday(self):
        period = week_of(date(2026, 1, 15))
        assert period.key == "2026-W03"
        assert period.granularity == WEEK
        assert period.start == date(2026, 1, 12)
        assert period.end == date(2026, 1, 18)

    def test_iso_year_boundary(self):
        # 2027-01-01 is a Friday in ISO week 53 of 2026
        assert week_of(date(2027, 1, 1)).key == "2026-W53"


class TestMonthOf:
    def test_bounds(self):
        period = month_of(date(2026, 2, 10))
        assert period.key == "2026-02"
        assert period.granularity == MONTH
        assert period.start == date(2026, 2, 1)
        assert period.end == date(2026, 2, 28)


class TestParsePeriodKey:
    def test_week_round_trip(self):
        assert parse_period_key("2026-W03") == week_of(date(2026, 1, 12))

    def test_month(self):
        assert parse_period_key("2026-12").end == date(2026, 12, 31)

    @pytest.mark.parametrize("key", ["2026-13", "2026-W60", "W03", "", "2026/03"])
    def test_rejects_bad_keys(self, key):
        with pytest.raises(InvalidInput):
            parse_period_key(key)


def test_period_keys_for_tags_week_and_month():
    assert period_keys_for(date(2026, 3, 1)) == ["2026-W09", "2026-03"]


def test_trailing_weeks_newest_first():
    weeks = trailing_weeks(date(2026, 1, 15), 3)
    assert [week.key for week in weeks] == ["2026-W03", "2026-W02", "2026-W01"]
