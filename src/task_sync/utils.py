from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Current time as an aware UTC datetime (microsecond resolution)."""
    return datetime.now(timezone.utc)
