"""
core/timestamps.py -- UTC timestamp helpers shared by every store.

All timestamps are persisted as ISO 8601 strings in UTC with second
precision, e.g. '2024-03-01T12:00:00+00:00'. A single fixed format keeps
lexical ORDER BY on the text column equal to chronological order.
"""

from datetime import datetime, timezone


def now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


def to_iso(value: datetime) -> str:
    """Normalize a datetime to the storage format. Naive values are treated as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="seconds")


def parse_iso(value: str) -> datetime:
    """Parse a stored or user-supplied timestamp string into an aware UTC datetime.

    Accepts a trailing 'Z' and the space-separated form used by ThreatFox CSV
    exports ('2024-03-01 12:00:00'). Raises ValueError on anything else.
    """
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
