"""Timestamp helpers."""
from datetime import datetime, timezone


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with milliseconds, e.g. 2024-05-01T10:00:00.000Z."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def current_year() -> int:
    return datetime.now(timezone.utc).year


def today_iso() -> str:
    return datetime.now(timezone.utc).date().isoformat()
