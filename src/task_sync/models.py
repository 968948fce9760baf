from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Literal, Optional, TypedDict

SyncStatus = Literal["pending", "synced", "error"]
SyncOperation = Literal["create", "update", "delete"]

SYNC_PENDING: SyncStatus = "pending"
SYNC_SYNCED: SyncStatus = "synced"
SYNC_ERROR: SyncStatus = "error"

# Fields a conflict resolution may overwrite on the local row.
RESOLVABLE_FIELDS = ("title", "description", "completed", "updated_at")


# PUBLIC_INTERFACE
class TaskEntity(TypedDict):
    """
    A lightweight domain model representing a locally stored task.

    Fields:
    - id: Client-generated identifier (uuid4 string), never changes
    - title: Short title (1..200 chars, trimmed on input via schemas)
    - description: Optional detailed description
    - completed: Boolean completion flag
    - is_deleted: Soft-delete flag; tombstones stay until the delete is synced
    - created_at: UTC creation timestamp
    - updated_at: UTC last update timestamp, non-decreasing per task
    - sync_status: pending, synced or error
    - server_id: Identifier assigned by the remote service on first sync
    - last_synced_at: When the remote service last confirmed this task
    """

    id: str
    title: str
    description: Optional[str]
    completed: bool
    is_deleted: bool
    created_at: datetime
    updated_at: datetime
    sync_status: SyncStatus
    server_id: Optional[str]
    last_synced_at: Optional[datetime]


# PUBLIC_INTERFACE
class SyncQueueEntity(TypedDict):
    """
    One pending intent in the outbox.

    Fields:
    - id: Queue entry identifier (uuid4 string), echoed back by the server as client_id
    - task_id: Owning task
    - operation: create, update or delete
    - data: Snapshot of the task fields at enqueue time
    - created_at: Enqueue timestamp; entries are processed oldest first
    - retry_count: Number of failed delivery attempts
    - error_message: Reason recorded by the last failed attempt
    """

    id: str
    task_id: str
    operation: SyncOperation
    data: Dict[str, Any]
    created_at: datetime
    retry_count: int
    error_message: Optional[str]
