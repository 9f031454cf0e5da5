"""Date, time and duration parsing utilities.

All timestamps handled by the ledger are naive UTC datetimes; SQLite drops
timezone information anyway, so values are normalized on the way in.
"""

import re
from datetime import UTC, date, datetime, timedelta
from typing import Union

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([smhd]?)\s*$")
_DURATION_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(UTC).replace(tzinfo=None)


def to_utc_naive(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(UTC).replace(tzinfo=None)
    return value


def parse_date(date_str: str) -> date:
    """Parse a date string into a date object.

    Supports various formats including relative dates:
    - Absolute dates: "2024-01-15", "January 15, 2024", etc.
    - Relative dates: "today", "yesterday", "last month", "this year", etc.

    Args:
        date_str: Date string in various formats

    Returns:
        Date object

    Raises:
        ValueError: If date string cannot be parsed
    """
    date_str = date_str.strip().lower()
    today = utcnow().date()

    relative_dates = {
        "today": today,
        "yesterday": today - timedelta(days=1),
    }

    if date_str in relative_dates:
        return relative_dates[date_str]

    if date_str.startswith("last "):
        period = date_str[5:]
        if period == "month":
            return (today - relativedelta(months=1)).replace(day=1)
        elif period == "year":
            return today.replace(month=1, day=1) - relativedelta(years=1)
        elif period == "week":
            return today - timedelta(days=today.weekday() + 7)

    elif date_str.startswith("this "):
        period = date_str[5:]
        if period == "month":
            return today.replace(day=1)
        elif period == "year":
            return today.replace(month=1, day=1)
        elif period == "week":
            return today - timedelta(days=today.weekday())

    try:
        return date_parser.parse(date_str).date()
    except (ValueError, TypeError, OverflowError) as e:
        raise ValueError(f"Could not parse date '{date_str}': {e}")


def parse_datetime(value: Union[str, date, datetime]) -> datetime:
    """Parse a timestamp into a naive UTC datetime.

    Accepts datetime/date objects, ISO-like strings with or without offset,
    and the relative words understood by :func:`parse_date` (which resolve
    to midnight UTC).
    """
    if isinstance(value, datetime):
        return to_utc_naive(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    text = value.strip()
    if not text:
        raise ValueError("Empty date string")
    lowered = text.lower()
    if lowered in ("today", "yesterday") or lowered.startswith(("last ", "this ")):
        parsed = parse_date(text)
        return datetime(parsed.year, parsed.month, parsed.day)
    try:
        return to_utc_naive(date_parser.parse(text))
    except (ValueError, TypeError, OverflowError) as e:
        raise ValueError(f"Could not parse datetime '{value}': {e}")


def parse_duration(value: Union[str, int, float, timedelta]) -> timedelta:
    """Parse a polling interval such as ``90``, ``"30s"``, ``"15m"``, ``"1h"``.

    Raises:
        ValueError: If the value is not a positive duration
    """
    if isinstance(value, timedelta):
        seconds = value.total_seconds()
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = float(value)
    else:
        match = _DURATION_RE.match(str(value).lower())
        if match is None:
            raise ValueError(f"Could not parse duration '{value}'")
        seconds = float(match.group(1)) * _DURATION_UNITS[match.group(2)]

    if seconds <= 0:
        raise ValueError(f"Duration must be positive, got '{value}'")
    return timedelta(seconds=seconds)
