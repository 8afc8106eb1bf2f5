# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""Date window arithmetic for certificate validity checks.

All timestamps handled here are timezone-aware and normalized to UTC.
Certificate dates are date-only (vaccination date, recovery and
exemption validity bounds) and resolve to UTC midnight; test collection
times keep their full precision.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Union

__all__ = [
    "EPOCH",
    "add_days",
    "add_hours",
    "end_of_day",
    "is_at_least_years_old",
    "parse_date",
    "parse_datetime",
    "start_of_day",
    "to_iso",
    "utc_now",
]

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

Number = Union[int, float]

# YYYY, YYYY-MM or YYYY-MM-DD (partial dates appear in dates of birth).
_DATE_RE = re.compile(r"^(\d{4})(?:-(\d{2})(?:-(\d{2}))?)?$")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_date(value: str) -> datetime:
    """Parse the date part of an ISO 8601 string to UTC midnight.

    Any time component after ``T`` is discarded.

    Raises:
        ValueError: If the value is empty or not a valid date.
    """
    if not value:
        raise ValueError("date is empty")
    date_part = value.strip().split("T", 1)[0]
    match = _DATE_RE.match(date_part)
    if match is None:
        raise ValueError(f"invalid date: {value!r}")
    year, month, day = match.groups()
    return datetime(int(year), int(month or 1), int(day or 1), tzinfo=timezone.utc)


def parse_datetime(value: str) -> datetime:
    """Parse a full ISO 8601 timestamp; naive values are taken as UTC.

    Raises:
        ValueError: If the value is empty or not a valid timestamp.
    """
    if not value:
        raise ValueError("timestamp is empty")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def add_days(ts: datetime, days: Number) -> datetime:
    return ts + timedelta(days=days)


def add_hours(ts: datetime, hours: Number) -> datetime:
    return ts + timedelta(hours=hours)


def start_of_day(ts: datetime) -> datetime:
    """Truncate to 00:00:00.000 UTC."""
    return ts.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)


def end_of_day(ts: datetime) -> datetime:
    """Extend to 23:59:59.999 UTC."""
    return ts.astimezone(timezone.utc).replace(hour=23, minute=59, second=59, microsecond=999000)


def is_at_least_years_old(birth: datetime, as_of: datetime, years: int) -> bool:
    """Check whether the holder had reached ``years`` of age at ``as_of``.

    The birth date is pinned 1 ms after midnight so that a birthday
    falling exactly on ``as_of`` never rounds up to the next year.  The
    difference is then read as a date counted from the epoch and its
    year offset taken as the age.
    """
    reference = start_of_day(as_of)
    born = start_of_day(birth) + timedelta(milliseconds=1)
    age = (EPOCH + (reference - born)).year - 1970
    return age >= years


def to_iso(ts: datetime) -> str:
    """Format as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` in UTC."""
    ts = ts.astimezone(timezone.utc)
    return ts.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ts.microsecond // 1000:03d}Z"
