"""Time utilities for TemporalBridge.

Everything stored by the engine (graph attributes, session documents) uses
ISO 8601 strings in UTC. Parsing is lenient about the incoming shape because
the graph service and older session files are not under our control.
"""

from datetime import datetime, timezone
from typing import Any, Optional


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Format a datetime as an ISO 8601 string with a Z suffix.

    Naive datetimes are assumed to already be UTC.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO date/datetime string into an aware UTC datetime.

    Supported formats:
    - "2024-01-15" (date only, assumes start of day UTC)
    - "2024-01-15T10:30:00" (datetime, assumes UTC)
    - "2024-01-15T10:30:00Z" / "2024-01-15T10:30:00.123Z"
    - "2024-01-15T10:30:00+02:00"

    Args:
        value: Candidate timestamp (non-strings are rejected)

    Returns:
        Aware datetime in UTC, or None if parsing fails
    """
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    # fromisoformat only accepts the Z suffix from Python 3.11 onwards
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"

    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
