from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from .models import SYNC_ERROR, SYNC_PENDING, SYNC_SYNCED, SyncOperation, TaskEntity
from .outbox import SyncIntentSink
from .repositories import Repository, TaskQuery
from .schemas import TaskCreate, TaskUpdate
from .utils import utc_now

logger = logging.getLogger(__name__)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def task_snapshot(task: TaskEntity) -> Dict[str, Any]:
    """JSON-ready copy of the task fields carried by an outbox entry."""
    return {
        "id": task["id"],
        "title": task["title"],
        "description": task["description"],
        "completed": task["completed"],
        "is_deleted": task["is_deleted"],
        "created_at": _iso(task["created_at"]),
        "updated_at": _iso(task["updated_at"]),
        "server_id": task["server_id"],
    }


# PUBLIC_INTERFACE
class TaskStore:
    """
    Owns the task lifecycle.

    Every create, update and soft delete writes the row with
    sync_status='pending' and appends exactly one outbox entry, both inside
    one repository transaction. The mark_*/apply_resolution/purge methods are
    the sync engine's write-back path and never enqueue anything.
    """

    def __init__(self, repository: Repository, sync_queue: SyncIntentSink) -> None:
        self._repo = repository
        self._queue = sync_queue

    @staticmethod
    def _now() -> datetime:
        return utc_now()

    def _next_timestamp(self, previous: datetime) -> datetime:
        # updated_at never moves backwards, even if the clock or a server
        # resolution put the stored value ahead of now.
        now = self._now()
        return now if now > previous else previous

    def _enqueue(self, task: TaskEntity, operation: SyncOperation) -> None:
        self._queue.add_to_sync_queue(task["id"], operation, task_snapshot(task))

    # ---- local mutations ----

    def create(self, data: TaskCreate) -> TaskEntity:
        now = self._now()
        task: TaskEntity = {
            "id": str(uuid.uuid4()),
            "title": data.title,
            "description": data.description,
            "completed": data.completed,
            "is_deleted": False,
            "created_at": now,
            "updated_at": now,
            "sync_status": SYNC_PENDING,
            "server_id": None,
            "last_synced_at": None,
        }
        with self._repo.transaction():
            self._repo.insert_task(task)
            self._enqueue(task, "create")
        logger.debug("Created task %s", task["id"])
        return task

    def update(self, task_id: str, data: TaskUpdate) -> Optional[TaskEntity]:
        """
        Apply the fields explicitly present in ``data``. Returns None when the
        task does not exist or is a tombstone; nothing is queued in that case.
        """
        with self._repo.transaction():
            current = self._repo.get_task(task_id)
            if current is None or current["is_deleted"]:
                return None

            fields: Dict[str, Any] = {}
            if "title" in data.model_fields_set and data.title is not None:
                fields["title"] = data.title
            if "description" in data.model_fields_set:
                fields["description"] = data.description
            if "completed" in data.model_fields_set and data.completed is not None:
                fields["completed"] = data.completed
            fields["updated_at"] = self._next_timestamp(current["updated_at"])
            fields["sync_status"] = SYNC_PENDING

            updated = self._repo.update_task(task_id, fields)
            assert updated is not None
            self._enqueue(updated, "update")
        return updated

    def soft_delete(self, task_id: str) -> bool:
        """
        Mark the task deleted and queue the delete. The row stays as a
        tombstone until the remote service confirms.
        """
        with self._repo.transaction():
            current = self._repo.get_task(task_id)
            if current is None or current["is_deleted"]:
                return False
            updated = self._repo.update_task(
                task_id,
                {
                    "is_deleted": True,
                    "updated_at": self._next_timestamp(current["updated_at"]),
                    "sync_status": SYNC_PENDING,
                },
            )
            assert updated is not None
            self._enqueue(updated, "delete")
        return True

    # ---- reads ----

    def get(self, task_id: str, include_deleted: bool = False) -> Optional[TaskEntity]:
        task = self._repo.get_task(task_id)
        if task is None or (task["is_deleted"] and not include_deleted):
            return None
        return task

    def list_active(self) -> List[TaskEntity]:
        items, _ = self._repo.list_tasks(TaskQuery())
        return items

    def list_page(self, limit: int, offset: int) -> tuple[List[TaskEntity], int]:
        return self._repo.list_tasks(TaskQuery(limit=limit, offset=offset))

    def list_needing_sync(self) -> List[TaskEntity]:
        items, _ = self._repo.list_tasks(
            TaskQuery(include_deleted=True, sync_statuses=(SYNC_PENDING, SYNC_ERROR))
        )
        return items

    # ---- sync write-back ----

    def _confirmed_fields(self, server_id: Optional[str], still_pending: bool) -> Dict[str, Any]:
        fields: Dict[str, Any] = {
            "sync_status": SYNC_PENDING if still_pending else SYNC_SYNCED,
            "last_synced_at": self._now(),
        }
        if server_id:
            # Never overwrite a known server id with nothing.
            fields["server_id"] = server_id
        return fields

    def mark_synced(
        self, task_id: str, server_id: Optional[str] = None, still_pending: bool = False
    ) -> Optional[TaskEntity]:
        """
        Record a confirmed delivery. With ``still_pending`` the status stays
        'pending' because later intents for the task are still queued.
        """
        return self._repo.update_task(task_id, self._confirmed_fields(server_id, still_pending))

    def mark_error(self, task_id: str) -> Optional[TaskEntity]:
        return self._repo.update_task(task_id, {"sync_status": SYNC_ERROR})

    def apply_resolution(
        self,
        task_id: str,
        winner: Mapping[str, Any],
        server_id: Optional[str] = None,
        still_pending: bool = False,
    ) -> Optional[TaskEntity]:
        """Write the winning field set of a resolved conflict; the id never changes."""
        fields = self._confirmed_fields(server_id, still_pending)
        fields.update(
            {
                "title": winner["title"],
                "description": winner["description"],
                "completed": winner["completed"],
                "updated_at": winner["updated_at"],
            }
        )
        return self._repo.update_task(task_id, fields)

    def purge(self, task_id: str) -> bool:
        """Drop a tombstone whose deletion the remote service has confirmed."""
        task = self._repo.get_task(task_id)
        if task is None or not task["is_deleted"]:
            return False
        removed = self._repo.delete_task(task_id)
        if removed:
            logger.debug("Purged tombstone %s", task_id)
        return removed
