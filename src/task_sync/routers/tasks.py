from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..dependencies import get_task_store
from ..schemas import TaskCreate, TaskOut, TaskUpdate
from ..task_store import TaskStore

router = APIRouter(
    prefix="/api/v1/tasks",
    tags=["tasks"],
)

_NOT_FOUND = "Task not found"


class PaginationEnvelope(BaseModel):
    """
    Envelope for paginated list responses.
    """
    items: List[TaskOut] = Field(..., description="List of active tasks")
    total: int = Field(..., description="Total number of active tasks")
    limit: int = Field(..., description="Limit applied to the query")
    offset: int = Field(..., description="Offset applied to the query")


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=TaskOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Task",
    description="Create a task locally and queue it for synchronization.",
    responses={
        201: {"description": "Task created successfully"},
        422: {"description": "Validation error"},
    },
)
def create_task(payload: TaskCreate, store: TaskStore = Depends(get_task_store)) -> TaskOut:
    """
    Create a new task.
    """
    created = store.create(payload)
    return TaskOut(**created)


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=PaginationEnvelope,
    summary="List Tasks",
    description="List active (not deleted) tasks, oldest first, with limit/offset pagination.",
    responses={200: {"description": "List retrieved successfully"}},
)
def list_tasks(
    limit: int = Query(50, ge=0, le=1000, description="Maximum number of items to return"),
    offset: int = Query(0, ge=0, description="Number of items to skip"),
    store: TaskStore = Depends(get_task_store),
) -> PaginationEnvelope:
    """
    List active tasks with pagination.
    """
    items, total = store.list_page(limit=limit, offset=offset)
    return PaginationEnvelope(
        items=[TaskOut(**it) for it in items],
        total=total,
        limit=limit,
        offset=offset,
    )


# PUBLIC_INTERFACE
@router.get(
    "/{task_id}",
    response_model=TaskOut,
    summary="Get Task",
    description="Get a single task by ID. Deleted tasks are reported as not found.",
    responses={
        200: {"description": "Task found"},
        404: {"description": "Task not found"},
    },
)
def get_task(task_id: str, store: TaskStore = Depends(get_task_store)) -> TaskOut:
    """
    Retrieve a single task by its ID.
    """
    item = store.get(task_id)
    if not item:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_NOT_FOUND)
    return TaskOut(**item)


# PUBLIC_INTERFACE
@router.put(
    "/{task_id}",
    response_model=TaskOut,
    summary="Replace Task",
    description="Replace the editable fields of a task. Omitted fields take their defaults.",
    responses={
        200: {"description": "Task updated"},
        404: {"description": "Task not found"},
    },
)
def put_task(task_id: str, payload: TaskCreate, store: TaskStore = Depends(get_task_store)) -> TaskOut:
    """
    Full update (replace) semantics implemented by mapping TaskCreate into a
    TaskUpdate with every field set.
    """
    update = TaskUpdate(
        title=payload.title,
        description=payload.description,
        completed=payload.completed,
    )
    updated = store.update(task_id, update)
    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_NOT_FOUND)
    return TaskOut(**updated)


# PUBLIC_INTERFACE
@router.patch(
    "/{task_id}",
    response_model=TaskOut,
    summary="Update Task",
    description="Partially update fields of a task.",
    responses={
        200: {"description": "Task updated"},
        404: {"description": "Task not found"},
    },
)
def patch_task(task_id: str, payload: TaskUpdate, store: TaskStore = Depends(get_task_store)) -> TaskOut:
    """
    Partial update of a task.
    """
    updated = store.update(task_id, payload)
    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_NOT_FOUND)
    return TaskOut(**updated)


# PUBLIC_INTERFACE
@router.delete(
    "/{task_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Task",
    description="Soft-delete a task. The tombstone is kept until the deletion is synced.",
    responses={
        204: {"description": "Task deleted"},
        404: {"description": "Task not found"},
    },
)
def delete_task(task_id: str, store: TaskStore = Depends(get_task_store)) -> None:
    """
    Delete a task. Returns 204 on success, 404 if not found.
    """
    ok = store.soft_delete(task_id)
    if not ok:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_NOT_FOUND)
    return None
