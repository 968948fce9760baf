from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from threading import RLock
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from .models import SyncQueueEntity, TaskEntity
from .settings import Settings, get_settings


@dataclass(frozen=True)
class TaskQuery:
    """
    Filters for enumerating task rows. Results are ordered oldest first.
    """
    include_deleted: bool = False
    sync_statuses: Optional[Sequence[str]] = None
    limit: Optional[int] = None
    offset: int = 0


@dataclass(frozen=True)
class QueueQuery:
    """
    Filters for enumerating outbox rows. Results are ordered by creation time,
    then insertion order.
    """
    task_id: Optional[str] = None
    min_retries: Optional[int] = None
    limit: Optional[int] = None
    offset: int = 0


# PUBLIC_INTERFACE
class Repository(ABC):
    """Persistence gateway contract for task rows and outbox rows."""

    @abstractmethod
    @contextmanager
    def transaction(self) -> Iterator[None]:
        """
        Group the enclosed reads and writes into one unit that commits on
        normal exit and rolls back if the block raises.
        """

    # ---- tasks ----

    @abstractmethod
    def get_task(self, task_id: str) -> Optional[TaskEntity]:
        """Return a task row by id (tombstones included), or None."""

    @abstractmethod
    def insert_task(self, task: TaskEntity) -> None:
        """Insert a new task row."""

    @abstractmethod
    def update_task(self, task_id: str, fields: Dict[str, Any]) -> Optional[TaskEntity]:
        """Overwrite the given columns. Return the new row or None if not found."""

    @abstractmethod
    def delete_task(self, task_id: str) -> bool:
        """Remove a task row. Return True if it existed."""

    @abstractmethod
    def list_tasks(self, query: Optional[TaskQuery] = None) -> Tuple[List[TaskEntity], int]:
        """Return a slice of matching task rows and the total match count."""

    # ---- outbox ----

    @abstractmethod
    def insert_queue_item(self, item: SyncQueueEntity) -> None:
        """Append an outbox row."""

    @abstractmethod
    def get_queue_item(self, item_id: str) -> Optional[SyncQueueEntity]:
        """Return an outbox row by id, or None."""

    @abstractmethod
    def update_queue_item(self, item_id: str, fields: Dict[str, Any]) -> Optional[SyncQueueEntity]:
        """Overwrite the given columns. Return the new row or None if not found."""

    @abstractmethod
    def delete_queue_item(self, item_id: str) -> bool:
        """Remove an outbox row. Return True if it existed."""

    @abstractmethod
    def list_queue_items(self, query: Optional[QueueQuery] = None) -> List[SyncQueueEntity]:
        """Return matching outbox rows, oldest first."""

    @abstractmethod
    def count_queue_items(self, query: Optional[QueueQuery] = None) -> int:
        """Return the number of matching outbox rows (ignores limit and offset)."""


class InMemoryRepository(Repository):
    """
    Thread-safe in-memory repository suitable for testing and default runtime.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._tasks: dict[str, TaskEntity] = {}
        self._queue: dict[str, SyncQueueEntity] = {}
        self._depth = 0

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            outermost = self._depth == 0
            if outermost:
                # Stored rows are replaced on write, never mutated in place,
                # so copying the two mappings is a complete snapshot.
                saved = (dict(self._tasks), dict(self._queue))
            self._depth += 1
            try:
                yield
            except BaseException:
                if outermost:
                    self._tasks, self._queue = saved
                raise
            finally:
                self._depth -= 1

    def get_task(self, task_id: str) -> Optional[TaskEntity]:
        with self._lock:
            item = self._tasks.get(task_id)
            return None if item is None else item.copy()

    def insert_task(self, task: TaskEntity) -> None:
        with self._lock:
            if task["id"] in self._tasks:
                raise KeyError(f"task {task['id']} already exists")
            self._tasks[task["id"]] = task.copy()

    def update_task(self, task_id: str, fields: Dict[str, Any]) -> Optional[TaskEntity]:
        with self._lock:
            existing = self._tasks.get(task_id)
            if existing is None:
                return None
            updated = existing.copy()
            updated.update(fields)  # type: ignore[typeddict-item]
            updated["id"] = task_id
            self._tasks[task_id] = updated
            return updated.copy()

    def delete_task(self, task_id: str) -> bool:
        with self._lock:
            return self._tasks.pop(task_id, None) is not None

    def list_tasks(self, query: Optional[TaskQuery] = None) -> Tuple[List[TaskEntity], int]:
        q = query or TaskQuery()
        with self._lock:
            items = list(self._tasks.values())

            if not q.include_deleted:
                items = [t for t in items if not t["is_deleted"]]
            if q.sync_statuses is not None:
                statuses = set(q.sync_statuses)
                items = [t for t in items if t["sync_status"] in statuses]

            total = len(items)
            items_sorted = sorted(items, key=lambda t: t["created_at"])

            start = max(q.offset, 0)
            end = None if q.limit is None else start + max(q.limit, 0)
            return [t.copy() for t in items_sorted[start:end]], total

    def insert_queue_item(self, item: SyncQueueEntity) -> None:
        with self._lock:
            if item["id"] in self._queue:
                raise KeyError(f"queue item {item['id']} already exists")
            self._queue[item["id"]] = copy.deepcopy(item)

    def get_queue_item(self, item_id: str) -> Optional[SyncQueueEntity]:
        with self._lock:
            item = self._queue.get(item_id)
            return None if item is None else copy.deepcopy(item)

    def update_queue_item(self, item_id: str, fields: Dict[str, Any]) -> Optional[SyncQueueEntity]:
        with self._lock:
            existing = self._queue.get(item_id)
            if existing is None:
                return None
            updated = copy.deepcopy(existing)
            updated.update(fields)  # type: ignore[typeddict-item]
            updated["id"] = item_id
            self._queue[item_id] = updated
            return copy.deepcopy(updated)

    def delete_queue_item(self, item_id: str) -> bool:
        with self._lock:
            return self._queue.pop(item_id, None) is not None

    def _matching_queue_items(self, q: QueueQuery) -> List[SyncQueueEntity]:
        # dicts keep insertion order and sorted() is stable, so ties on
        # created_at stay in enqueue order.
        items = sorted(self._queue.values(), key=lambda i: i["created_at"])
        if q.task_id is not None:
            items = [i for i in items if i["task_id"] == q.task_id]
        if q.min_retries is not None:
            items = [i for i in items if i["retry_count"] >= q.min_retries]
        return items

    def list_queue_items(self, query: Optional[QueueQuery] = None) -> List[SyncQueueEntity]:
        q = query or QueueQuery()
        with self._lock:
            items = self._matching_queue_items(q)
            start = max(q.offset, 0)
            end = None if q.limit is None else start + max(q.limit, 0)
            items = items[start:end]
            return [copy.deepcopy(i) for i in items]

    def count_queue_items(self, query: Optional[QueueQuery] = None) -> int:
        with self._lock:
            return len(self._matching_queue_items(query or QueueQuery()))


# PUBLIC_INTERFACE
def get_repository(settings: Optional[Settings] = None) -> Repository:
    """
    Factory to return the configured repository based on settings.
    - memory: InMemoryRepository
    - sqlite: SQLiteRepository
    """
    settings = settings or get_settings()
    if settings.persistence_backend == "sqlite":
        from .db import SQLiteRepository

        return SQLiteRepository(settings.sqlite_db_path)
    return InMemoryRepository()
