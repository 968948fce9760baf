"""Error kinds raised while talking to the remote reconciliation service."""

from __future__ import annotations

from typing import Optional


class SyncError(Exception):
    """Base class for synchronization failures."""


class ConnectivityFailure(SyncError):
    """The liveness probe failed or timed out. No queue item is affected."""


class BatchTransportFailure(SyncError):
    """The batch request failed as a whole; every item in it is retried."""


class ItemConflictUnresolved(SyncError):
    """A conflict verdict arrived without a usable local row or server snapshot."""

    def __init__(self, message: str = "Conflict unresolved") -> None:
        super().__init__(message)


class ItemRejected(SyncError):
    """The server refused a single item."""

    def __init__(self, reason: Optional[str] = None) -> None:
        self.reason = reason or "sync error"
        super().__init__(self.reason)
