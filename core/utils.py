"""
Core date utility functions used across the ledger apps.
"""
from datetime import date, datetime, timedelta
from typing import Tuple

from dateutil.relativedelta import relativedelta


def add_months(anchor: date, months: int) -> date:
    """
    Add calendar months to a date, clamping to the last day of short months.
    Always computed from the anchor so repeated steps never drift
    (Jan 31 -> Feb 28 -> Mar 31, not Mar 28).
    """
    return anchor + relativedelta(months=months)


def month_start(value: date) -> date:
    return value.replace(day=1)


def month_end(value: date) -> date:
    return month_start(value) + relativedelta(months=1) - timedelta(days=1)


def week_start(value: date) -> date:
    """Monday of the ISO week containing ``value``."""
    return value - timedelta(days=value.weekday())


def bucket_bounds(value: date, bucket: str) -> Tuple[date, date]:
    """
    Return (start, end) of the bucket containing ``value``.

    Args:
        value: Date to bucket
        bucket: 'day', 'week' (Monday start) or 'month'
    """
    if bucket == 'day':
        return value, value
    if bucket == 'week':
        start = week_start(value)
        return start, start + timedelta(days=6)
    if bucket == 'month':
        return month_start(value), month_end(value)
    raise ValueError(f"Unknown bucket granularity: {bucket}")


def period_bounds(today: date, period: str):
    """
    Get the current calendar period containing ``today``.

    Returns:
        tuple: (start, end), or (None, None) for 'all'
    """
    if period == 'all':
        return None, None
    if period == 'year':
        return date(today.year, 1, 1), date(today.year, 12, 31)
    if period == 'quarter':
        first_month = 3 * ((today.month - 1) // 3) + 1
        start = date(today.year, first_month, 1)
        return start, add_months(start, 3) - timedelta(days=1)
    if period == 'month':
        return month_start(today), month_end(today)
    raise ValueError(f"Unknown period: {period}")


def trailing_months(today: date, count: int = 12):
    """First days of the ``count`` calendar months ending with today's month, oldest first."""
    current = month_start(today)
    return [add_months(current, -offset) for offset in range(count - 1, -1, -1)]


def parse_date(value) -> date:
    """Parse an ISO date string (or pass through date/datetime values)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(str(value)[:10], '%Y-%m-%d').date()
