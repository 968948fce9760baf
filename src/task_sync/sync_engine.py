"""Sync engine: drains the outbox in batches and applies the server's verdicts.

One pass probes the remote service, submits the oldest queue entries in a
single request, then reconciles each verdict into the task store and the
outbox. Passes are serialized by a lock held for the whole pass.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from .conflict import resolve_conflict
from .exceptions import (
    BatchTransportFailure,
    ConnectivityFailure,
    ItemConflictUnresolved,
    ItemRejected,
)
from .models import SyncQueueEntity
from .outbox import SyncQueue
from .repositories import Repository
from .schemas import ProcessedItem
from .sync_client import RemoteReconcilerClient
from .task_store import TaskStore
from .utils import utc_now

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50
DEFAULT_PROBE_TIMEOUT = 5.0
DEFAULT_MAX_RETRIES = 5

NO_VERDICT_ERROR = "No verdict returned for item"


@dataclass
class SyncErrorRecord:
    task_id: str
    operation: str
    error: str
    timestamp: datetime = field(default_factory=utc_now)


@dataclass
class SyncResult:
    """Aggregate outcome of one pass. success is True iff no item failed."""

    success: bool = True
    synced_items: int = 0
    failed_items: int = 0
    errors: List[SyncErrorRecord] = field(default_factory=list)
    # Dead-lettered entries held back from delivery; informational only.
    skipped_items: int = 0

    @classmethod
    def offline(cls) -> "SyncResult":
        return cls(success=False)


# PUBLIC_INTERFACE
class SyncEngine:
    """
    Reconciles the local outbox with the remote service.

    Args:
        task_store: Write-back path for task rows.
        sync_queue: The outbox the task store appends to.
        client: Remote reconciler client.
        repository: Gateway used to group each verdict's writes into one transaction.
        batch_size: Max entries submitted per pass.
        probe_timeout: Seconds allowed for the liveness probe.
        max_retries: Failed attempts after which an entry is dead-lettered.
        purge_tombstones: Hard-delete a tombstone once its delete is confirmed.
    """

    def __init__(
        self,
        task_store: TaskStore,
        sync_queue: SyncQueue,
        client: RemoteReconcilerClient,
        repository: Repository,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        purge_tombstones: bool = True,
    ) -> None:
        self._store = task_store
        self._queue = sync_queue
        self._client = client
        self._repo = repository
        self._batch_size = max(1, int(batch_size))
        self._probe_timeout = probe_timeout
        self._max_retries = max(1, int(max_retries))
        self._purge_tombstones = purge_tombstones
        self._lock = threading.Lock()

    @property
    def max_retries(self) -> int:
        return self._max_retries

    @property
    def sync_queue(self) -> SyncQueue:
        return self._queue

    def is_online(self) -> bool:
        try:
            self._client.check_health(self._probe_timeout)
        except ConnectivityFailure as e:
            logger.info("Remote service unreachable: %s", e)
            return False
        return True

    # PUBLIC_INTERFACE
    def sync(self) -> SyncResult:
        """
        Run one reconciliation pass.

        Overlapping calls wait for the running pass to finish. Network and
        per-item failures are reported in the result; only storage errors
        propagate.
        """
        with self._lock:
            return self._run_pass()

    def _run_pass(self) -> SyncResult:
        if not self.is_online():
            logger.info("Offline - sync skipped, changes stay queued")
            return SyncResult.offline()

        skipped = len(self._queue.dead_letters(self._max_retries))
        batch = self._queue.next_batch(self._batch_size, self._max_retries)
        if not batch:
            return SyncResult(skipped_items=skipped)

        logger.debug("Submitting %d queued changes", len(batch))
        try:
            response = self._client.submit_batch(batch)
        except BatchTransportFailure as e:
            logger.warning("Batch of %d items failed: %s", len(batch), e)
            result = self._fail_all(batch, str(e))
            result.skipped_items = skipped
            return result

        result = SyncResult(skipped_items=skipped)
        by_id = {item["id"]: item for item in batch}
        answered: set[str] = set()

        for verdict in response.processed_items:
            item = by_id.get(verdict.client_id)
            if item is None:
                logger.warning("Ignoring verdict for unknown queue item %s", verdict.client_id)
                continue
            if verdict.client_id in answered:
                logger.warning("Ignoring duplicate verdict for queue item %s", verdict.client_id)
                continue
            answered.add(verdict.client_id)

            try:
                applied = self._apply_verdict(item, verdict)
            except (ItemConflictUnresolved, ItemRejected) as e:
                self._record_failure(result, item, str(e))
                continue
            if applied:
                result.synced_items += 1

        for item in batch:
            if item["id"] not in answered:
                self._record_failure(result, item, NO_VERDICT_ERROR)

        result.success = result.failed_items == 0
        logger.info(
            "Sync complete: synced=%d failed=%d skipped=%d",
            result.synced_items,
            result.failed_items,
            result.skipped_items,
        )
        return result

    def _apply_verdict(self, item: SyncQueueEntity, verdict: ProcessedItem) -> bool:
        """
        Apply one verdict atomically. Returns False when the queue entry was
        already consumed, so a replayed verdict changes nothing.
        """
        with self._repo.transaction():
            if self._queue.get(item["id"]) is None:
                logger.debug("Queue item %s already consumed; skipping", item["id"])
                return False

            if verdict.status == "success":
                self._queue.remove(item["id"])
                still_pending = self._queue.has_pending(item["task_id"])
                if item["operation"] == "delete" and self._purge_tombstones and not still_pending:
                    if self._store.purge(item["task_id"]):
                        return True
                self._store.mark_synced(item["task_id"], verdict.server_id, still_pending)
                return True

            if verdict.status == "conflict":
                self._resolve(item, verdict)
                return True

            raise ItemRejected(verdict.error)

    def _resolve(self, item: SyncQueueEntity, verdict: ProcessedItem) -> None:
        local = self._store.get(item["task_id"], include_deleted=True)
        if local is None or not verdict.resolved_data:
            raise ItemConflictUnresolved()
        try:
            resolution = resolve_conflict(local, verdict.resolved_data)
        except ValidationError as e:
            raise ItemConflictUnresolved("Conflict unresolved: invalid server snapshot") from e
        except (KeyError, ValueError) as e:
            raise ItemConflictUnresolved(f"Conflict unresolved: {e}") from e

        self._queue.remove(item["id"])
        still_pending = self._queue.has_pending(item["task_id"])
        self._store.apply_resolution(
            item["task_id"], resolution.winner, verdict.server_id, still_pending
        )
        logger.info(
            "Resolved conflict on task %s in favour of %s", item["task_id"], resolution.source
        )

    def _fail_item(self, item: SyncQueueEntity, error: str) -> Optional[SyncErrorRecord]:
        """
        Bump the entry's retry counter and flag its task. Returns None if the
        entry no longer exists.
        """
        with self._repo.transaction():
            retries = self._queue.record_failure(item["id"], error)
            if retries is None:
                return None
            self._store.mark_error(item["task_id"])
        if retries >= self._max_retries:
            logger.warning(
                "Queue item %s for task %s reached %d retries; dead-lettered",
                item["id"],
                item["task_id"],
                retries,
            )
        else:
            logger.warning(
                "Sync of %s for task %s failed (retry %d/%d): %s",
                item["operation"],
                item["task_id"],
                retries,
                self._max_retries,
                error,
            )
        return SyncErrorRecord(task_id=item["task_id"], operation=item["operation"], error=error)

    def _record_failure(self, result: SyncResult, item: SyncQueueEntity, error: str) -> None:
        record = self._fail_item(item, error)
        if record is not None:
            result.failed_items += 1
            result.errors.append(record)

    def _fail_all(self, batch: Iterable[SyncQueueEntity], error: str) -> SyncResult:
        result = SyncResult(success=False)
        for item in batch:
            self._record_failure(result, item, error)
        return result

    # ---- inspection ----

    def status(self) -> Dict[str, Any]:
        return {
            "online": self.is_online(),
            "pending_items": self._queue.count(),
            "dead_letter_items": len(self._queue.dead_letters(self._max_retries)),
            "tasks_needing_sync": len(self._store.list_needing_sync()),
            "max_retries": self._max_retries,
        }

    def requeue_dead_letters(self, item_ids: Optional[Iterable[str]] = None) -> int:
        with self._lock:
            return self._queue.requeue(self._max_retries, item_ids)
