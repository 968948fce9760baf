from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _clean_title(v: str) -> str:
    s = v.strip()
    if not (1 <= len(s) <= 200):
        raise ValueError("title length must be between 1 and 200 characters")
    return s


# PUBLIC_INTERFACE
class TaskCreate(BaseModel):
    """
    Schema for creating a new task.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Buy milk",
                "description": "Two litres, semi-skimmed",
                "completed": False,
            }
        }
    )

    title: str = Field(..., description="Short title for the task", min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, description="Optional detailed description")
    completed: bool = Field(default=False, description="Completion status flag")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """
        Strip whitespace and enforce 1..200 length.
        """
        if v is None:
            raise ValueError("title is required")
        return _clean_title(v)


# PUBLIC_INTERFACE
class TaskUpdate(BaseModel):
    """
    Schema for updating an existing task.
    All fields are optional; only provided fields will be updated.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Buy milk and bread",
                "completed": True,
            }
        }
    )

    title: Optional[str] = Field(default=None, description="Short title for the task", min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, description="Optional detailed description")
    completed: Optional[bool] = Field(default=None, description="Completion status flag")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        """
        If title is provided, strip whitespace and enforce 1..200 length.
        """
        if v is None:
            return v
        return _clean_title(v)


# PUBLIC_INTERFACE
class TaskOut(BaseModel):
    """
    Schema returned by the API for a task.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "5f0c7d7e-8a43-4a55-9b57-4d2f0f0b1d11",
                "title": "Buy milk",
                "description": None,
                "completed": False,
                "is_deleted": False,
                "created_at": "2025-01-25T10:15:30.123456+00:00",
                "updated_at": "2025-01-25T10:15:30.123456+00:00",
                "sync_status": "pending",
                "server_id": None,
                "last_synced_at": None,
            }
        }
    )

    id: str = Field(..., description="Client-generated identifier of the task")
    title: str = Field(..., description="Short title for the task")
    description: Optional[str] = Field(default=None, description="Optional detailed description")
    completed: bool = Field(..., description="Completion status flag")
    is_deleted: bool = Field(default=False, description="Soft-delete flag")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")
    sync_status: Literal["pending", "synced", "error"] = Field(..., description="Synchronization state")
    server_id: Optional[str] = Field(default=None, description="Identifier assigned by the remote service")
    last_synced_at: Optional[datetime] = Field(default=None, description="Last confirmed sync")


# PUBLIC_INTERFACE
class SyncQueueItemOut(BaseModel):
    """
    An outbox entry as submitted to the remote service and shown by the API.
    """

    id: str = Field(..., description="Queue entry identifier, echoed back as client_id")
    task_id: str = Field(..., description="Owning task")
    operation: Literal["create", "update", "delete"] = Field(..., description="Intent kind")
    data: Dict[str, Any] = Field(default_factory=dict, description="Task snapshot at enqueue time")
    created_at: datetime = Field(..., description="Enqueue timestamp")
    retry_count: int = Field(default=0, ge=0, description="Failed delivery attempts")
    error_message: Optional[str] = Field(default=None, description="Last failure reason")


# PUBLIC_INTERFACE
class BatchSyncRequest(BaseModel):
    """Body of POST {base}/batch."""

    items: List[SyncQueueItemOut]
    client_timestamp: datetime


# PUBLIC_INTERFACE
class ProcessedItem(BaseModel):
    """
    One server verdict. ``status`` is kept as free text: anything other than
    success or conflict counts as a rejection.
    """

    model_config = ConfigDict(extra="ignore")

    client_id: str
    status: str
    server_id: Optional[str] = None
    resolved_data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @field_validator("client_id", "server_id", mode="before")
    @classmethod
    def coerce_identifier(cls, v: Any) -> Any:
        """
        Accept numeric identifiers from the server and normalize them to str.
        """
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v


# PUBLIC_INTERFACE
class ResolvedTaskSnapshot(BaseModel):
    """
    The server's copy of a task when it wins a conflict.

    Checked before it replaces the local row: title must be a non-empty
    string, completed a real boolean ("false" and "0" parse as False, junk is
    rejected). updated_at arrives already normalized to an aware datetime.
    """

    model_config = ConfigDict(extra="ignore")

    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    completed: bool
    updated_at: datetime

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        return _clean_title(v)


# PUBLIC_INTERFACE
class BatchSyncResponse(BaseModel):
    """Body returned by POST {base}/batch."""

    model_config = ConfigDict(extra="ignore")

    processed_items: List[ProcessedItem] = Field(default_factory=list)


# PUBLIC_INTERFACE
class SyncErrorOut(BaseModel):
    task_id: str
    operation: str
    error: str
    timestamp: datetime


# PUBLIC_INTERFACE
class SyncResultOut(BaseModel):
    """
    Aggregate outcome of one sync pass.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "success": False,
                "synced_items": 2,
                "failed_items": 1,
                "skipped_items": 0,
                "errors": [
                    {
                        "task_id": "5f0c7d7e-8a43-4a55-9b57-4d2f0f0b1d11",
                        "operation": "update",
                        "error": "Conflict unresolved",
                        "timestamp": "2025-01-25T10:16:00.000000+00:00",
                    }
                ],
            }
        }
    )

    success: bool
    synced_items: int
    failed_items: int
    skipped_items: int = 0
    errors: List[SyncErrorOut] = Field(default_factory=list)


# PUBLIC_INTERFACE
class SyncStatusOut(BaseModel):
    """Snapshot of the outbox and the remote service's reachability."""

    online: bool
    pending_items: int
    dead_letter_items: int
    tasks_needing_sync: int
    max_retries: int


# PUBLIC_INTERFACE
class RequeueRequest(BaseModel):
    """Optional list of dead-letter ids to requeue; omit to requeue all."""

    item_ids: Optional[List[str]] = Field(default=None, description="Queue entry ids")


# PUBLIC_INTERFACE
class RequeueResult(BaseModel):
    requeued: int
