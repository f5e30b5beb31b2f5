"""Timezone-aware UTC timestamps for handles, events and run results.

Every serialized timestamp carries a +00:00 offset so reports written by
different runs can be compared and sorted directly.
"""

from datetime import datetime, timezone


def now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def isonow() -> str:
    """Return the current UTC time as an ISO 8601 string."""
    return now().isoformat()


def parse_timestamp(iso_str: str) -> datetime:
    """Parse an ISO timestamp, assuming UTC when no offset is present."""
    dt = datetime.fromisoformat(iso_str)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def elapsed_seconds(start_iso: str, end_iso: str) -> float:
    """Seconds between two ISO timestamps; 0.0 if either is missing."""
    if not start_iso or not end_iso:
        return 0.0
    return (parse_timestamp(end_iso) - parse_timestamp(start_iso)).total_seconds()
