"""
Time helpers.

All timestamps written by this project (``run_metadata``, product
``updated_at``, ``sync_metadata.last_synced_at``) are timezone-aware UTC.
"""

from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Return the current UTC datetime with timezone info.

    Prefer this over ``datetime.utcnow()`` (which returns naive datetimes).
    """
    return datetime.now(tz=timezone.utc)


def to_iso(value: datetime) -> str:
    """Format ``value`` as an ISO-8601 string with a ``Z`` suffix."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
