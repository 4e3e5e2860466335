"""
Calendar date helpers.

Delivery dates are local calendar dates (``YYYY-MM-DD``) and are never run
through a timezone conversion. Timestamps are timezone-aware UTC.
"""
from __future__ import annotations
import re
from datetime import date, datetime, timezone
from typing import Optional, Union

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_local_date(value: Union[str, date]) -> date:
    """Parse ``YYYY-MM-DD`` into a date; raises ValueError on anything else."""
    if isinstance(value, datetime):
        raise ValueError("Expected a calendar date, got a timestamp")
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError("Invalid date format. Use YYYY-MM-DD")
    raw = value.strip()
    if not _ISO_DATE.match(raw):
        raise ValueError("Invalid date format. Use YYYY-MM-DD")
    year, month, day = (int(p) for p in raw.split("-"))
    return date(year, month, day)


def utc_calendar_date(ts: datetime) -> date:
    """Calendar date of a timestamp in UTC (naive values are taken as UTC)."""
    if ts.tzinfo is None:
        return ts.date()
    return ts.astimezone(timezone.utc).date()


def epoch_millis(ts: Optional[datetime] = None) -> int:
    ts = ts or utcnow()
    return int(ts.timestamp() * 1000)


def iso_timestamp(ts: Optional[datetime] = None) -> str:
    """UTC timestamp as ``2025-01-28T09:15:00.123Z``."""
    ts = ts or utcnow()
    return ts.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
