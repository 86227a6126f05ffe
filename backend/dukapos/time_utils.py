"""
UTC handling for DukaPOS.

Timestamps are stored naive and in UTC. Request values arrive as ISO-8601
strings; a date-only end bound covers that whole day.
"""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def parse_iso_datetime(value: str | None) -> datetime | None:
    """
    Parse an ISO-8601 string to naive UTC.

    Blank input gives None. Naive input is taken as UTC; "Z" and offsets
    are converted. Raises ValueError on anything else.
    """
    if value is None or not value.strip():
        return None
    return as_naive_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))


def parse_date_range(start: str | None, end: str | None) -> tuple[datetime | None, datetime | None]:
    """
    Inclusive (start, end) filter bounds from query-string values.

    Raises ValueError on a malformed value or when start is after end.
    """
    start_at = parse_iso_datetime(start)
    end_at = parse_iso_datetime(end)
    if end_at is not None and len(end.strip()) == 10:
        end_at = datetime.combine(end_at.date(), time.max)
    if start_at is not None and end_at is not None and start_at > end_at:
        raise ValueError("start_date is after end_date")
    return start_at, end_at


def is_in_future(dt: datetime, *, skew: timedelta = timedelta()) -> bool:
    return as_naive_utc(dt) > utcnow() + skew


def to_utc_z(dt: datetime | None) -> str | None:
    """Serialize as "YYYY-MM-DDTHH:MM:SSZ"; naive values are UTC."""
    if dt is None:
        return None
    return as_naive_utc(dt).strftime("%Y-%m-%dT%H:%M:%SZ")
