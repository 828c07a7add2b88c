"""
Datetime utility functions.
Provides timezone-aware "now" and calendar-date normalization for the ledger.
"""

from datetime import date, datetime
from typing import Union
import pytz


DateInput = Union[str, date, datetime]


def utcnow() -> datetime:
    """
    Get current UTC datetime using pytz.UTC.

    Returns:
        Current UTC datetime with pytz timezone information
    """
    return datetime.now(pytz.UTC)


def utc_today() -> date:
    """Current calendar date in UTC."""
    return utcnow().date()


def normalize_date(date_input: DateInput) -> date:
    """
    Normalize any date-ish input to a calendar date.

    Strings keep only their ``YYYY-MM-DD`` prefix, so a timestamp such as
    ``"2026-03-02T23:30:00-08:00"`` maps to 2026-03-02 with no UTC
    conversion. Datetimes use their own ``.date()`` for the same reason.

    Args:
        date_input: ISO date/timestamp string, date, or datetime

    Returns:
        Calendar date

    Raises:
        ValueError: If the input cannot be parsed as a date

    Examples:
        >>> normalize_date("2026-03-02T23:30:00Z")
        datetime.date(2026, 3, 2)
    """
    if isinstance(date_input, datetime):
        return date_input.date()

    if isinstance(date_input, date):
        return date_input

    if not isinstance(date_input, str):
        raise ValueError(f"Expected string, date or datetime, got {type(date_input)}")

    date_str = date_input.strip().split("T")[0].split(" ")[0]
    try:
        return datetime.strptime(date_str, "%Y-%m-%d").date()
    except ValueError:
        raise ValueError(f"Invalid date: {date_input!r}")


def inclusive_day_count(start: date, end: date) -> int:
    """Number of calendar days in [start, end], both ends included."""
    return (end - start).days + 1
