# Overview: UTC clock and timestamp helpers; the database stores naive UTC datetimes.

from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Current time as naive UTC, the form every timestamp column holds."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: str | None) -> datetime | None:
    """
    Query-string timestamp to naive UTC.

    Blank means "not given". Offsets (including a trailing Z) are converted;
    a value without one is already UTC.
    """
    if not value or not value.strip():
        return None
    text = value.strip()
    if text[-1] in "zZ":
        text = text[:-1] + "+00:00"

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_utc_z(dt: datetime | None) -> str | None:
    """JSON form of a stored timestamp: whole seconds with a Z suffix."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0).isoformat() + "Z"


def month_bounds(dt: datetime) -> tuple[datetime, datetime]:
    """[first instant of dt's month, first instant of the next month)."""
    start = dt.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


def previous_month_bounds(dt: datetime) -> tuple[datetime, datetime]:
    start, _ = month_bounds(dt)
    return month_bounds(start - timedelta(days=1))
