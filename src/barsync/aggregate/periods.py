"""Period keys: ISO weeks (``2026-W03``) and calendar months (``2026-03``)."""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta

import pytz

from barsync.config import settings
from barsync.errors import InvalidInput

WEEK = "week"
MONTH = "month"

_WEEK_RE = re.compile(r"^(\d{4})-W(\d{2})$")
_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")


@dataclass(frozen=True)
class Period:
    key: str
    granularity: str
    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


def week_of(day: date) -> Period:
    iso_year, iso_week, _ = day.isocalendar()
    start = day - timedelta(days=day.weekday())
    return Period(
        key=f"{iso_year}-W{iso_week:02d}",
        granularity=WEEK,
        start=start,
        end=start + timedelta(days=6),
    )


def month_of(day: date) -> Period:
    last_day = calendar.monthrange(day.year, day.month)[1]
    return Period(
        key=f"{day.year}-{day.month:02d}",
        granularity=MONTH,
        start=day.replace(day=1),
        end=day.replace(day=last_day),
    )


def period_keys_for(day: date) -> list[str]:
    """Every summary period a business date contributes to."""
    return [week_of(day).key, month_of(day).key]


def parse_period_key(key: str) -> Period:
    match = _WEEK_RE.match(key or "")
    if match:
        year, week = int(match.group(1)), int(match.group(2))
        try:
            start = date.fromisocalendar(year, week, 1)
        except ValueError as exc:
            raise InvalidInput(f"Invalid ISO week: {key}") from exc
        return week_of(start)

    match = _MONTH_RE.match(key or "")
    if match:
        year, month = int(match.group(1)), int(match.group(2))
        if not 1 <= month <= 12:
            raise InvalidInput(f"Invalid month: {key}")
        return month_of(date(year, month, 1))

    raise InvalidInput(f"Unrecognized period key: {key!r} (expected YYYY-Www or YYYY-MM)")


def trailing_weeks(today: date, count: int) -> list[Period]:
    """Current week plus the ``count - 1`` weeks before it, newest first."""
    current = week_of(today)
    return [week_of(current.start - timedelta(weeks=offset)) for offset in range(count)]


def business_today(timezone: str | None = None) -> date:
    """Today's date in the business timezone."""
    tz = pytz.timezone(timezone or settings.business_timezone)
    return datetime.now(tz).date()
