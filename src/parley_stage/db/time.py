# src/parley_stage/db/time.py
"""Clock used for message, follow and key timestamps.

Every ``created_at``, ``updated_at`` and ``deleted_at`` column and the expiry
of access tokens read the time from here, so all stored instants are UTC.
"""

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Current instant, timezone-aware in UTC."""
    return datetime.now(UTC)
