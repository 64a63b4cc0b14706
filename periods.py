import calendar
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings
from errors import ValidationError


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def validate_year_month(year: int, month: int) -> None:
    if month < 1 or month > 12:
        raise ValidationError("Month must be between 1 and 12")
    if year < 1 or year > 9999:
        raise ValidationError(f"Invalid year: {year}")


def shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    total_months = year * 12 + (month - 1) + delta
    return total_months // 12, total_months % 12 + 1


def month_start(year: int, month: int) -> date:
    return date(year, month, 1)


def month_end(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def month_period(year: int, month: int) -> Period:
    validate_year_month(year, month)
    return Period(f"{year:04d}-{month:02d}", month_start(year, month), month_end(year, month))


def previous_month(today: Optional[date] = None) -> tuple[int, int]:
    today = today or local_today()
    return shift_month(today.year, today.month, -1)


def resolve_target_month(
    year: Optional[int],
    month: Optional[int],
    *,
    today: Optional[date] = None,
) -> tuple[int, int]:
    if year is None or month is None:
        return previous_month(today)
    validate_year_month(year, month)
    return year, month


def resolve_range(start: date, end: date) -> Period:
    if start > end:
        raise ValidationError("Start date must be before end date")
    return Period("custom", start, end)
