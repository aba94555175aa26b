"""Period keys, labels and date-range helpers.

Two week numberings are used:
    fiscal week  - days since a fixed epoch // 7 + 1 (dashboard charts)
    year week    - same rule anchored on Jan 1 of the date's own year (P&L)
Neither is ISO-8601.
"""

from datetime import date, datetime, timedelta
from enum import Enum
from typing import Union

DateLike = Union[date, datetime]

MONTH_ABBR = [
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
]


class Granularity(str, Enum):
    """Time bucket sizes."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"


class DatePreset(str, Enum):
    """Dashboard date range shortcuts."""

    MTD = "mtd"
    QTD = "qtd"
    YTD = "ytd"
    LAST_30 = "last30"
    LAST_90 = "last90"


def _as_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def fiscal_week(value: DateLike, epoch: date) -> int:
    """Week number counted from ``epoch`` (week 1 starts on the epoch).

    Dates before the epoch produce zero or negative weeks.
    """
    days = (_as_date(value) - epoch).days
    return days // 7 + 1


def year_week(value: DateLike) -> int:
    """Week number relative to Jan 1 of the date's own year."""
    d = _as_date(value)
    return fiscal_week(d, date(d.year, 1, 1))


def quarter_of(value: DateLike) -> int:
    """Calendar quarter (1-4)."""
    return (_as_date(value).month - 1) // 3 + 1


def period_key(value: DateLike, granularity: Granularity) -> str:
    """Sortable string key for the period containing ``value``.

    day: 2025-01-05, week: 2025-W01, month: 2025-01, quarter: 2025-Q1, year: 2025
    """
    d = _as_date(value)
    if granularity == Granularity.DAY:
        return d.isoformat()
    if granularity == Granularity.WEEK:
        return f"{d.year}-W{year_week(d):02d}"
    if granularity == Granularity.QUARTER:
        return f"{d.year}-Q{quarter_of(d)}"
    if granularity == Granularity.YEAR:
        return str(d.year)
    return f"{d.year}-{d.month:02d}"


def period_label(key: str, granularity: Granularity) -> str:
    """Human label for a P&L period key (e.g. "Week 3, 2025", "Jan 2025")."""
    if granularity == Granularity.DAY:
        d = date.fromisoformat(key)
        return f"{MONTH_ABBR[d.month - 1]} {d.day}, {d.year}"
    if granularity == Granularity.WEEK:
        year, week = key.split("-W")
        return f"Week {int(week)}, {year}"
    if granularity == Granularity.MONTH:
        year, month = key.split("-")
        return f"{MONTH_ABBR[int(month) - 1]} {year}"
    if granularity == Granularity.QUARTER:
        year, quarter = key.split("-Q")
        return f"Q{quarter} {year}"
    return key


def chart_label(key: str, granularity: Granularity) -> str:
    """Short label used on dashboard charts (e.g. "W3", "Jan 5", "Jan")."""
    if granularity == Granularity.DAY:
        d = date.fromisoformat(key)
        return f"{MONTH_ABBR[d.month - 1]} {d.day}"
    if granularity == Granularity.WEEK:
        return f"W{key}"
    if granularity == Granularity.MONTH:
        _, month = key.split("-")
        return MONTH_ABBR[int(month) - 1]
    if granularity == Granularity.QUARTER:
        return key.replace("-", " ")
    return key


def period_bounds(key: str, granularity: Granularity) -> tuple[date, date]:
    """Inclusive first and last day covered by a P&L period key."""
    if granularity == Granularity.DAY:
        d = date.fromisoformat(key)
        return d, d
    if granularity == Granularity.WEEK:
        year, week = key.split("-W")
        first = date(int(year), 1, 1) + timedelta(days=(int(week) - 1) * 7)
        last = min(first + timedelta(days=6), date(int(year), 12, 31))
        return first, last
    if granularity == Granularity.QUARTER:
        year, quarter = key.split("-Q")
        start_month = (int(quarter) - 1) * 3 + 1
        first = date(int(year), start_month, 1)
        return first, _month_end(int(year), start_month + 2)
    if granularity == Granularity.YEAR:
        return date(int(key), 1, 1), date(int(key), 12, 31)
    year, month = key.split("-")
    return date(int(year), int(month), 1), _month_end(int(year), int(month))


def _month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year, 12, 31)
    return date(year, month + 1, 1) - timedelta(days=1)


def period_keys_in_range(start: date, end: date, granularity: Granularity) -> list[str]:
    """Keys of every period touching ``[start, end]``, in order."""
    keys: list[str] = []
    day = start
    while day <= end:
        key = period_key(day, granularity)
        if not keys or keys[-1] != key:
            keys.append(key)
        day += timedelta(days=1)
    return keys


def inclusive_day_span(start: date, end: date) -> int:
    """Number of calendar days in ``[start, end]``, at least 1."""
    return max(1, (end - start).days + 1)


def exclusive_end(end_inclusive: date) -> date:
    """Upper bound for "< end" feed queries covering the whole last day."""
    return end_inclusive + timedelta(days=1)


def clip_range(
    first: date,
    last: date,
    start: date,
    end: date,
) -> tuple[date, date]:
    """Intersect ``[first, last]`` with the report range ``[start, end]``."""
    return max(first, start), min(last, end)


def weeks_to_seed(start: date, end: date, today: date, epoch: date) -> list[int]:
    """Fiscal weeks to pre-seed on weekly charts.

    Every week from the one containing ``start`` through the week containing
    ``end``, or today's week when the range runs into the future.
    """
    last = min(end, today) if today >= start else end
    return list(range(fiscal_week(start, epoch), fiscal_week(last, epoch) + 1))


def is_multi_year(start: date, end: date) -> bool:
    """True when the range crosses a calendar year boundary."""
    return start.year != end.year


def _shift_year(d: date, years: int) -> date:
    try:
        return d.replace(year=d.year + years)
    except ValueError:
        # Feb 29 -> Feb 28
        return d.replace(year=d.year + years, day=28)


def comparison_range(start: date, end: date) -> tuple[date, date]:
    """Same range one year earlier (year-over-year comparison)."""
    return _shift_year(start, -1), _shift_year(end, -1)


def resolve_preset(preset: DatePreset, today: date) -> tuple[date, date]:
    """Resolve a dashboard preset to an inclusive ``(start, end)`` pair."""
    if preset == DatePreset.MTD:
        return date(today.year, today.month, 1), today
    if preset == DatePreset.QTD:
        first_month = (quarter_of(today) - 1) * 3 + 1
        return date(today.year, first_month, 1), today
    if preset == DatePreset.YTD:
        return date(today.year, 1, 1), today
    if preset == DatePreset.LAST_30:
        return today - timedelta(days=30), today
    return today - timedelta(days=90), today
