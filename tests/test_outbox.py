from task_sync.outbox import MAX_ERROR_LENGTH, SyncQueue
from task_sync.repositories import InMemoryRepository, QueueQuery


def _fill(queue, *task_ids):
    return [queue.add_to_sync_queue(tid, "update", {"id": tid}) for tid in task_ids]


class TestSyncQueue:
    def test_entries_get_distinct_ids(self, queue):
        first, second = _fill(queue, "t1", "t1")

        assert first["id"] != second["id"]
        assert first["id"] != "t1"
        assert first["retry_count"] == 0
        assert first["error_message"] is None
        assert queue.count() == 2

    def test_next_batch_is_oldest_first_and_limited(self, queue):
        items = _fill(queue, "a", "b", "c")

        assert [i["id"] for i in queue.next_batch(2)] == [items[0]["id"], items[1]["id"]]
        assert queue.next_batch(0) == []

    def test_record_failure_increments_by_one(self, queue):
        (item,) = _fill(queue, "a")

        assert queue.record_failure(item["id"], "boom") == 1
        assert queue.record_failure(item["id"], "again") == 2
        stored = queue.get(item["id"])
        assert stored["retry_count"] == 2
        assert stored["error_message"] == "again"

    def test_record_failure_on_missing_entry(self, queue):
        assert queue.record_failure("missing", "boom") is None

    def test_error_message_is_capped(self, queue):
        (item,) = _fill(queue, "a")
        queue.record_failure(item["id"], "x" * (MAX_ERROR_LENGTH + 50))

        assert len(queue.get(item["id"])["error_message"]) == MAX_ERROR_LENGTH

    def test_dead_letter_blocks_later_entries_of_same_task(self, queue):
        a1, b1, a2 = _fill(queue, "a", "b", "a")
        queue.record_failure(a1["id"], "e1")
        queue.record_failure(a1["id"], "e2")

        batch = queue.next_batch(10, max_retries=2)

        assert [i["id"] for i in batch] == [b1["id"]]
        assert [i["id"] for i in queue.dead_letters(2)] == [a1["id"]]
        # Without a cap everything is deliverable.
        assert [i["id"] for i in queue.next_batch(10)] == [a1["id"], b1["id"], a2["id"]]

    def test_requeue_selected_dead_letters(self, queue):
        a1, b1 = _fill(queue, "a", "b")
        for item in (a1, b1):
            queue.record_failure(item["id"], "e")

        assert queue.requeue(1, [b1["id"]]) == 1
        assert queue.get(b1["id"])["retry_count"] == 0
        assert queue.get(b1["id"])["error_message"] is None
        assert queue.get(a1["id"])["retry_count"] == 1

        assert queue.requeue(1) == 1
        assert queue.dead_letters(1) == []

    def test_has_pending(self, queue):
        a1, a2 = _fill(queue, "a", "a")

        assert queue.has_pending("a")
        assert queue.has_pending("a", exclude=a1["id"])
        queue.remove(a2["id"])
        assert not queue.has_pending("a", exclude=a1["id"])
        assert not queue.has_pending("b")

    def test_selection_pages_past_leading_dead_letters(self, queue, monkeypatch):
        monkeypatch.setattr("task_sync.outbox.QUEUE_PAGE_SIZE", 2)
        a, b, c, d, e = _fill(queue, "a", "b", "c", "d", "e")
        for item in (a, b, c):
            queue.record_failure(item["id"], "e")

        assert [i["id"] for i in queue.next_batch(1, max_retries=1)] == [d["id"]]
        assert [i["id"] for i in queue.next_batch(5, max_retries=1)] == [d["id"], e["id"]]


class RecordingRepository(InMemoryRepository):
    def __init__(self):
        super().__init__()
        self.queue_queries = []

    def list_queue_items(self, query=None):
        self.queue_queries.append(query)
        return super().list_queue_items(query)


class TestBatchSelectionReads:
    def test_stops_reading_once_batch_is_full(self, monkeypatch):
        monkeypatch.setattr("task_sync.outbox.QUEUE_PAGE_SIZE", 3)
        repo = RecordingRepository()
        queue = SyncQueue(repo)
        _fill(queue, *[f"t{i}" for i in range(10)])

        batch = queue.next_batch(2, max_retries=5)

        assert len(batch) == 2
        assert repo.queue_queries == [QueueQuery(limit=3, offset=0)]
