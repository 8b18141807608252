from __future__ import annotations

import calendar
from datetime import datetime, time, timedelta, timezone
from typing import Optional, Tuple

from src.core.errors import BadRequestError

SUNDAY = 6
MAX_WINDOW_AGE_YEARS = 2


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def last_completed_week(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Monday 00:00:00 through Sunday 23:59:59 of the last week that has fully ended."""
    current = ensure_utc(now or datetime.now(timezone.utc))
    days_until_sunday = SUNDAY - current.weekday()
    sunday = current.date() + timedelta(days=days_until_sunday)
    window_end = datetime.combine(sunday, time(23, 59, 59), tzinfo=timezone.utc)
    if window_end > current:
        window_end -= timedelta(weeks=1)
    window_start = datetime.combine(
        window_end.date() - timedelta(days=6), time(0, 0, 0), tzinfo=timezone.utc
    )
    return window_start, window_end


def validate_window(
    start: Optional[datetime],
    end: Optional[datetime],
    now: Optional[datetime] = None,
) -> Tuple[datetime, datetime]:
    if start is None or end is None:
        raise BadRequestError("Window start and end are required")
    start_utc = ensure_utc(start)
    end_utc = ensure_utc(end)
    current = ensure_utc(now or datetime.now(timezone.utc))
    if start_utc > end_utc:
        raise BadRequestError("Window start cannot be after window end")
    if start_utc > current:
        raise BadRequestError("Window start cannot be in the future")
    # The window end becomes the snapshot record date and the coverage mark.
    if end_utc > current:
        raise BadRequestError("Window end cannot be in the future")
    if start_utc < subtract_years(current, MAX_WINDOW_AGE_YEARS):
        raise BadRequestError(f"Window start cannot be more than {MAX_WINDOW_AGE_YEARS} years ago")
    if subtract_years(end_utc, MAX_WINDOW_AGE_YEARS) > start_utc:
        raise BadRequestError(f"Window cannot span more than {MAX_WINDOW_AGE_YEARS} years")
    return start_utc, end_utc


def subtract_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 - months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def subtract_years(value: datetime, years: int) -> datetime:
    return subtract_months(value, 12 * years)
