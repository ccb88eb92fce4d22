"""Canonical UTC timestamps for last-write-wins comparison.

Profile/settings conflicts are resolved by comparing ``updatedAt`` strings
lexically. That only orders correctly when every stamp has the same shape,
so all stamps are normalized to ``YYYY-MM-DDTHH:MM:SS.mmmZ`` (the shape
JavaScript's ``toISOString`` produces) before they are compared.
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any

logger = logging.getLogger(__name__)

CANONICAL_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$")
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """Render a datetime as a canonical UTC stamp.

    Naive datetimes are taken to be UTC.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def utc_now() -> str:
    """Current time as a canonical UTC stamp."""
    return format_timestamp(datetime.now(timezone.utc))


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string, epoch milliseconds or datetime.

    Args:
        value: Raw timestamp as found in a snapshot.

    Returns:
        Aware UTC datetime, or None if the value is empty or unparseable.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        # Date.now() style epoch milliseconds
        try:
            dt = EPOCH + timedelta(milliseconds=value)
        except (OverflowError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def normalize_timestamp(value: Any) -> str:
    """Normalize a timestamp to canonical form for lexical comparison.

    Args:
        value: Raw timestamp (string, epoch millis, datetime or None).

    Returns:
        Canonical UTC stamp, or "" when the value is empty or invalid.
    """
    if isinstance(value, str) and CANONICAL_RE.match(value):
        return value

    dt = parse_timestamp(value)
    if dt is None:
        if value not in (None, ""):
            logger.warning(f"Ignoring unparseable timestamp {value!r}")
        return ""
    return format_timestamp(dt)
