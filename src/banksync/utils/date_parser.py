"""Date parsing utilities.

All timestamps stored by banksync are naive UTC, which is what SQLite hands
back from DateTime columns. Aware values are converted on the way in.
"""

from datetime import date, datetime, UTC
from typing import Any

from dateutil import parser as date_parser


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize a datetime to naive UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def parse_timestamp(value: Any) -> datetime:
    """Parse a timestamp into a naive UTC datetime.

    Accepts datetimes, dates and ISO-8601 style strings such as the
    ``createdAt`` values in UP Bank payloads ("2024-01-15T10:30:00+11:00").

    Raises:
        ValueError: If the value cannot be parsed
    """
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Could not parse timestamp {value!r}")
    try:
        return to_naive_utc(date_parser.isoparse(value.strip()))
    except ValueError:
        pass
    try:
        return to_naive_utc(date_parser.parse(value.strip()))
    except (ValueError, OverflowError) as e:
        raise ValueError(f"Could not parse timestamp '{value}': {e}")


def parse_date(value: Any) -> date:
    """Parse a date (used for rule date ranges).

    Raises:
        ValueError: If the value cannot be parsed
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return parse_timestamp(value).date()
