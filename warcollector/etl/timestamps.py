"""Clash of Clans timestamp handling.

The API returns instants in a compact basic-format ISO variant:

    YYYYMMDDTHHmmss.SSSZ   e.g. 20251220T041627.000Z

Everything we store is a timezone-aware UTC datetime.
"""

import re
from datetime import datetime, timezone
from typing import Union

_COMPACT_RE = re.compile(
    r"^(?P<year>\d{4})(?P<month>\d{2})(?P<day>\d{2})"
    r"T(?P<hour>\d{2})(?P<minute>\d{2})(?P<second>\d{2})"
    r"(?:\.(?P<millis>\d{1,6}))?Z$"
)


def parse_provider_timestamp(value: Union[str, datetime]) -> datetime:
    """
    Parse a provider timestamp into a UTC-aware datetime.

    Accepts the compact provider format, standard ISO 8601 strings (as found in
    older data files) and datetimes. Naive datetimes are assumed to be UTC.

    Raises:
        ValueError: if the value cannot be interpreted as an instant.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        text = value.strip()
        match = _COMPACT_RE.match(text)
        if match:
            parts = match.groupdict()
            micros = int((parts["millis"] or "0").ljust(6, "0"))
            return datetime(
                int(parts["year"]),
                int(parts["month"]),
                int(parts["day"]),
                int(parts["hour"]),
                int(parts["minute"]),
                int(parts["second"]),
                micros,
                tzinfo=timezone.utc,
            )
        try:
            dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            raise ValueError(f"Unrecognized timestamp: {value!r}") from None
    else:
        raise ValueError(f"Unrecognized timestamp type: {type(value).__name__}")

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_provider_timestamp(dt: datetime) -> str:
    """Format a datetime in the compact provider format (inverse of parse)."""
    dt = parse_provider_timestamp(dt)
    return dt.strftime("%Y%m%dT%H%M%S.") + f"{dt.microsecond // 1000:03d}Z"


def is_valid_provider_timestamp(value) -> bool:
    """Check if a timestamp can be parsed."""
    try:
        parse_provider_timestamp(value)
        return True
    except ValueError:
        return False


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
