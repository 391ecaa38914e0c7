"""Timezone and time-format utilities for consistent UTC handling.

Devices report xsd:dateTime values and ISO 8601 durations. Everything inside
the client is converted to timezone-aware UTC datetimes and timedeltas.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

_DATETIME_RE = re.compile(
    r"^(?P<date>\d{4}-\d{2}-\d{2})[T ](?P<time>\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<fraction>\d+))?(?P<tz>Z|[+-]\d{2}:?\d{2})?$"
)

_DURATION_RE = re.compile(
    r"^(?P<sign>-)?P(?:(?P<days>\d+(?:\.\d+)?)D)?"
    r"(?:T(?:(?P<hours>\d+(?:\.\d+)?)H)?(?:(?P<minutes>\d+(?:\.\d+)?)M)?"
    r"(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$"
)


def utc_now() -> datetime:
    """Get current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Ensure a datetime is timezone-aware UTC.

    If the datetime is naive (no timezone), assume it's UTC and attach the timezone.
    If it already has a timezone, convert to UTC.

    Args:
        dt: A datetime object (naive or timezone-aware)

    Returns:
        Timezone-aware datetime in UTC
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_utc_isoformat(dt: datetime) -> str:
    """Convert datetime to ISO 8601 format with Z suffix for UTC."""
    utc_dt = ensure_utc(dt)
    return utc_dt.isoformat().replace("+00:00", "Z")


def parse_xsd_datetime(value: str) -> datetime:
    """Parse an xsd:dateTime string into an aware UTC datetime.

    Accepts a trailing ``Z``, numeric offsets, and fractional seconds of any
    precision (truncated to microseconds). A missing offset means UTC.

    Raises:
        ValueError: If the string is not a recognizable dateTime
    """
    match = _DATETIME_RE.match(value.strip())
    if not match:
        raise ValueError(f"Invalid xsd:dateTime: {value!r}")

    text = f"{match.group('date')}T{match.group('time')}"
    fraction = match.group("fraction")
    if fraction:
        text += "." + fraction[:6].ljust(6, "0")

    tz = match.group("tz")
    if tz is None or tz == "Z":
        text += "+00:00"
    elif ":" not in tz:
        text += f"{tz[:3]}:{tz[3:]}"
    else:
        text += tz

    return ensure_utc(datetime.fromisoformat(text))


def to_datetime(value: Any) -> Optional[datetime]:
    """Convert a decoded response value into an aware UTC datetime.

    Returns None when the value is absent or cannot be interpreted.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    if isinstance(value, dict) and "_" in value:
        return to_datetime(value["_"])
    if isinstance(value, str):
        try:
            return parse_xsd_datetime(value)
        except ValueError:
            return None
    return None


def parse_duration(value: str) -> timedelta:
    """Parse an ISO 8601 duration such as ``PT1M`` or ``PT2M30S``.

    Year and month designators are not supported since they have no fixed
    length.

    Raises:
        ValueError: If the string is not a supported duration
    """
    match = _DURATION_RE.match(value.strip())
    if not match or value.strip() in ("P", "PT", "-P", "-PT"):
        raise ValueError(f"Invalid ISO 8601 duration: {value!r}")

    delta = timedelta(
        days=float(match.group("days") or 0),
        hours=float(match.group("hours") or 0),
        minutes=float(match.group("minutes") or 0),
        seconds=float(match.group("seconds") or 0),
    )
    return -delta if match.group("sign") else delta


def format_duration(delta: timedelta) -> str:
    """Format a timedelta as an ISO 8601 duration (``PT90S`` style)."""
    total = delta.total_seconds()
    if total == int(total):
        return f"PT{int(total)}S"
    return f"PT{total:.3f}S"
