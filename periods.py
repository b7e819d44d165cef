import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from errors import ValidationFailed

MONTH_YEAR_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def today_in(timezone: str) -> date:
    return datetime.now(ZoneInfo(timezone)).date()


def month_start(year: int, month: int) -> date:
    return date(year, month, 1)


def month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1) - date.resolution
    return date(year, month + 1, 1) - date.resolution


def month_period(year: int, month: int) -> Period:
    return Period("month", month_start(year, month), month_end(year, month))


def add_months(year: int, month: int, count: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + count
    return index // 12, index % 12 + 1


def parse_month_year(value: str) -> tuple[int, int]:
    if not value or not MONTH_YEAR_RE.match(value):
        raise ValidationFailed(
            "Validation failed",
            [{"field": "monthYear", "message": "Month-year must be in YYYY-MM format"}],
        )
    year, month = value.split("-")
    return int(year), int(month)


def format_month_year(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def week_period(today: date) -> Period:
    # Sunday through Saturday
    start = today - timedelta(days=(today.weekday() + 1) % 7)
    return Period("week", start, start + timedelta(days=6))


def iso_week_period(today: date) -> Period:
    start = today - timedelta(days=today.weekday())
    return Period("week", start, start + timedelta(days=6))


def resolve_period(period: Optional[str], *, today: date) -> Period:
    if period == "week":
        return week_period(today)
    if period == "year":
        return Period("year", date(today.year, 1, 1), date(today.year, 12, 31))
    return month_period(today.year, today.month)


def resolve_range(
    period: Optional[str],
    start: Optional[date],
    end: Optional[date],
    *,
    today: date,
) -> Period:
    if start and end:
        if start > end:
            raise ValidationFailed(
                "Validation failed",
                [{"field": "startDate", "message": "Start date must be before end date"}],
            )
        return Period("custom", start, end)
    return resolve_period(period or "month", today=today)
