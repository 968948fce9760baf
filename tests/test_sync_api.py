import httpx


def _create(api, title):
    res = api.post("/api/v1/tasks/", json={"title": title})
    assert res.status_code == 201
    return res.json()


def _reject_all(payload):
    return {
        "processed_items": [
            {"client_id": item["id"], "status": "error", "error": "rejected"}
            for item in payload["items"]
        ]
    }


class TestRunSync:
    def test_sync_confirms_queued_changes(self, api, remote):
        task = _create(api, "Buy milk")
        remote.batch_handler = lambda payload: {
            "processed_items": [
                {"client_id": item["id"], "status": "success", "server_id": "srv-1"}
                for item in payload["items"]
            ]
        }

        res = api.post("/api/v1/sync/")

        assert res.status_code == 200
        body = res.json()
        assert body == {
            "success": True,
            "synced_items": 1,
            "failed_items": 0,
            "skipped_items": 0,
            "errors": [],
        }
        fetched = api.get(f"/api/v1/tasks/{task['id']}").json()
        assert fetched["sync_status"] == "synced"
        assert fetched["server_id"] == "srv-1"
        assert api.get("/api/v1/sync/queue").json() == []

    def test_offline_sync_reports_failure_without_touching_queue(self, api, remote):
        _create(api, "later")
        remote.online = False

        body = api.post("/api/v1/sync/").json()

        assert body["success"] is False
        assert body["synced_items"] == 0
        assert body["failed_items"] == 0
        assert body["errors"] == []
        queue = api.get("/api/v1/sync/queue").json()
        assert len(queue) == 1
        assert queue[0]["retry_count"] == 0

    def test_failed_items_are_reported(self, api, remote):
        task = _create(api, "nope")
        remote.batch_handler = lambda payload: httpx.ConnectError("reset")

        body = api.post("/api/v1/sync/").json()

        assert body["success"] is False
        assert body["failed_items"] == 1
        (error,) = body["errors"]
        assert error["task_id"] == task["id"]
        assert error["operation"] == "create"
        assert error["error"].startswith("Batch request failed")
        assert api.get(f"/api/v1/tasks/{task['id']}").json()["sync_status"] == "error"


class TestInspection:
    def test_status(self, api, remote):
        _create(api, "a")

        body = api.get("/api/v1/sync/status").json()

        assert body == {
            "online": True,
            "pending_items": 1,
            "dead_letter_items": 0,
            "tasks_needing_sync": 1,
            "max_retries": 5,
        }

    def test_queue_lists_entries_in_order(self, api):
        task = _create(api, "a")
        api.patch(f"/api/v1/tasks/{task['id']}", json={"completed": True})

        queue = api.get("/api/v1/sync/queue").json()

        assert [q["operation"] for q in queue] == ["create", "update"]
        assert queue[1]["data"]["completed"] is True
        assert len(api.get("/api/v1/sync/queue?limit=1").json()) == 1


class TestRequeue:
    def test_requeue_dead_letters(self, api, remote, container):
        _create(api, "stubborn")
        remote.batch_handler = _reject_all
        for _ in range(container.sync_engine.max_retries):
            api.post("/api/v1/sync/")

        status = api.get("/api/v1/sync/status").json()
        assert status["dead_letter_items"] == 1
        assert api.post("/api/v1/sync/").json()["skipped_items"] == 1

        res = api.post("/api/v1/sync/dead-letters/requeue")
        assert res.status_code == 200
        assert res.json() == {"requeued": 1}
        assert api.get("/api/v1/sync/status").json()["dead_letter_items"] == 0

    def test_requeue_selected_ids(self, api, remote, container):
        _create(api, "a")
        _create(api, "b")
        remote.batch_handler = _reject_all
        for _ in range(container.sync_engine.max_retries):
            api.post("/api/v1/sync/")
        first, second = api.get("/api/v1/sync/queue").json()

        res = api.post("/api/v1/sync/dead-letters/requeue", json={"item_ids": [second["id"]]})

        assert res.json() == {"requeued": 1}
        queue = {q["id"]: q for q in api.get("/api/v1/sync/queue").json()}
        assert queue[second["id"]]["retry_count"] == 0
        assert queue[first["id"]]["retry_count"] == 5
