"""
Identifier and timestamp helpers.

Every garden, zone and water schedule is keyed by a ULID: 26 Crockford
base32 characters whose first 10 encode the creation time in milliseconds.
Sorting ids lexically therefore sorts records by creation time, and the id
doubles as the scheduler tag for the resource.

Tags:
    ulid, timestamps, utc, unique-id
"""

from __future__ import annotations

import secrets
import time
from datetime import UTC, datetime

# ULID base32 alphabet (Crockford's)
_ENCODING = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_ENCODING_LEN = len(_ENCODING)
_TIME_CHARS = 10
_RANDOM_CHARS = 16


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def generate_ulid(now: datetime | None = None) -> str:
    """
    Generate a time-sortable ULID.

    Args:
        now: Timestamp to encode instead of the current time.
    """
    if now is None:
        timestamp_ms = int(time.time() * 1000)
    else:
        timestamp_ms = int(ensure_utc(now).timestamp() * 1000)
    timestamp_chars = _encode_base32(timestamp_ms, _TIME_CHARS)
    random_part = "".join(secrets.choice(_ENCODING) for _ in range(_RANDOM_CHARS))
    return timestamp_chars + random_part


def ulid_timestamp(ulid: str) -> datetime:
    """Decode the creation time embedded in a ULID."""
    if len(ulid) != _TIME_CHARS + _RANDOM_CHARS:
        raise ValueError(f"not a ULID: {ulid!r}")
    value = 0
    for char in ulid[:_TIME_CHARS].upper():
        index = _ENCODING.find(char)
        if index < 0:
            raise ValueError(f"not a ULID: {ulid!r}")
        value = value * _ENCODING_LEN + index
    return datetime.fromtimestamp(value / 1000, UTC)


def to_iso8601(dt: datetime | None) -> str | None:
    """Convert datetime to ISO 8601 string."""
    if dt is None:
        return None
    return dt.isoformat()


def from_iso8601(s: str | None) -> datetime | None:
    """Parse ISO 8601 string to datetime."""
    if s is None:
        return None
    return datetime.fromisoformat(s)


def _encode_base32(value: int, length: int) -> str:
    result = []
    for _ in range(length):
        result.append(_ENCODING[value % _ENCODING_LEN])
        value //= _ENCODING_LEN
    return "".join(reversed(result))


__all__ = [
    "utc_now",
    "ensure_utc",
    "generate_ulid",
    "ulid_timestamp",
    "to_iso8601",
    "from_iso8601",
]
