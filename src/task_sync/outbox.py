"""Durable outbox of local changes awaiting confirmation by the remote service."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Iterable, List, Optional, Protocol

from .models import SyncOperation, SyncQueueEntity
from .repositories import QueueQuery, Repository
from .utils import utc_now

logger = logging.getLogger(__name__)

# Stored error text is capped so a verbose server reply cannot bloat the row.
MAX_ERROR_LENGTH = 500

# Rows read per storage call while selecting a batch past dead letters.
QUEUE_PAGE_SIZE = 100


# PUBLIC_INTERFACE
class SyncIntentSink(Protocol):
    """The one capability the task store needs from the outbox."""

    def add_to_sync_queue(
        self, task_id: str, operation: SyncOperation, data: Dict[str, Any]
    ) -> SyncQueueEntity:
        ...


# PUBLIC_INTERFACE
class SyncQueue:
    """
    Ordered list of pending create/update/delete intents, keyed by task.

    Entries are only removed on confirmed acceptance or resolved conflict.
    Failures bump retry_count and keep the entry. Entries whose retry_count
    reaches the engine's max_retries are dead letters: still stored, but no
    longer selected for delivery until requeued.
    """

    def __init__(self, repository: Repository) -> None:
        self._repo = repository

    def add_to_sync_queue(
        self, task_id: str, operation: SyncOperation, data: Dict[str, Any]
    ) -> SyncQueueEntity:
        """
        Append one intent with retry_count 0. Never merges with earlier
        entries for the same task.
        """
        item: SyncQueueEntity = {
            "id": str(uuid.uuid4()),
            "task_id": task_id,
            "operation": operation,
            "data": dict(data),
            "created_at": utc_now(),
            "retry_count": 0,
            "error_message": None,
        }
        self._repo.insert_queue_item(item)
        logger.debug("Queued %s for task %s as %s", operation, task_id, item["id"])
        return item

    def get(self, item_id: str) -> Optional[SyncQueueEntity]:
        return self._repo.get_queue_item(item_id)

    def remove(self, item_id: str) -> bool:
        return self._repo.delete_queue_item(item_id)

    def next_batch(self, limit: int, max_retries: Optional[int] = None) -> List[SyncQueueEntity]:
        """
        Return up to ``limit`` deliverable entries, oldest first.

        With ``max_retries`` set, dead letters are skipped, and so is every
        later entry of the same task, so a task's intents are never delivered
        out of order.
        """
        if limit <= 0:
            return []
        if max_retries is None:
            return self._repo.list_queue_items(QueueQuery(limit=limit))

        batch: List[SyncQueueEntity] = []
        blocked: set[str] = set()
        page_size = max(limit, QUEUE_PAGE_SIZE)
        offset = 0
        while True:
            page = self._repo.list_queue_items(QueueQuery(limit=page_size, offset=offset))
            for item in page:
                if item["task_id"] in blocked:
                    continue
                if item["retry_count"] >= max_retries:
                    blocked.add(item["task_id"])
                    continue
                batch.append(item)
                if len(batch) >= limit:
                    return batch
            if len(page) < page_size:
                return batch
            offset += page_size

    def record_failure(self, item_id: str, error: str) -> Optional[int]:
        """
        Increment the entry's retry counter and store the error text.
        Returns the new retry_count, or None if the entry is gone.
        """
        with self._repo.transaction():
            current = self._repo.get_queue_item(item_id)
            if current is None:
                return None
            updated = self._repo.update_queue_item(
                item_id,
                {
                    "retry_count": current["retry_count"] + 1,
                    "error_message": (error or "sync error")[:MAX_ERROR_LENGTH],
                },
            )
        return None if updated is None else updated["retry_count"]

    def has_pending(self, task_id: str, exclude: Optional[str] = None) -> bool:
        """True if any entry other than ``exclude`` is still queued for the task."""
        items = self._repo.list_queue_items(QueueQuery(task_id=task_id))
        return any(i["id"] != exclude for i in items)

    def count(self) -> int:
        return self._repo.count_queue_items()

    def list_items(self, limit: Optional[int] = None) -> List[SyncQueueEntity]:
        return self._repo.list_queue_items(QueueQuery(limit=limit))

    def dead_letters(self, max_retries: int) -> List[SyncQueueEntity]:
        return self._repo.list_queue_items(QueueQuery(min_retries=max_retries))

    def requeue(self, max_retries: int, item_ids: Optional[Iterable[str]] = None) -> int:
        """Reset dead letters (all, or the given ids) so they are delivered again."""
        wanted = None if item_ids is None else set(item_ids)
        count = 0
        with self._repo.transaction():
            for item in self.dead_letters(max_retries):
                if wanted is not None and item["id"] not in wanted:
                    continue
                self._repo.update_queue_item(item["id"], {"retry_count": 0, "error_message": None})
                count += 1
        if count:
            logger.info("Requeued %d dead-lettered sync entries", count)
        return count
