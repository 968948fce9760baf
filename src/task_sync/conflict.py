"""Last-write-wins conflict resolution between a local task and the server's copy."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Mapping

from .models import RESOLVABLE_FIELDS
from .schemas import ResolvedTaskSnapshot


def to_datetime(value: Any) -> datetime:
    """
    Normalize a timestamp to an aware UTC datetime.

    Accepts datetimes (naive ones are taken as UTC), ISO 8601 strings
    (a trailing 'Z' is allowed) and numbers of milliseconds since the epoch.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    elif isinstance(value, (int, float)):
        dt = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    elif isinstance(value, str):
        s = value.strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError as e:
            raise ValueError(f"Invalid timestamp: {value!r}") from e
    else:
        raise ValueError(f"Invalid timestamp: {value!r}")

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class Resolution:
    """Outcome of a conflict: the field set to write and which side it came from."""

    winner: Dict[str, Any]
    source: Literal["local", "server"]


# PUBLIC_INTERFACE
def resolve_conflict(local: Mapping[str, Any], server: Mapping[str, Any]) -> Resolution:
    """
    Pick the surviving version of a task.

    The server snapshot wins wholesale only when its updated_at is strictly
    later than the local one; equal timestamps keep the local version. Only
    title, description, completed and updated_at are returned. Fields missing
    from a partial server snapshot keep their local values.

    Raises ValueError if either updated_at cannot be parsed, and pydantic's
    ValidationError if a winning server snapshot has invalid fields.
    """
    local_ts = to_datetime(local["updated_at"])
    server_ts = to_datetime(server.get("updated_at"))

    if server_ts > local_ts:
        merged = {f: server[f] if f in server else local[f] for f in RESOLVABLE_FIELDS}
        merged["updated_at"] = server_ts
        snapshot = ResolvedTaskSnapshot.model_validate(merged)
        return Resolution(winner=snapshot.model_dump(), source="server")

    winner = {f: local[f] for f in RESOLVABLE_FIELDS}
    winner["updated_at"] = local_ts
    return Resolution(winner=winner, source="local")
