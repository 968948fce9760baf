from __future__ import annotations

import json
import threading
from typing import Any, Callable, Dict, List, Optional, Union

import httpx
import pytest
from fastapi.testclient import TestClient

from task_sync.db import SQLiteRepository
from task_sync.dependencies import ServiceContainer, build_container
from task_sync.main import create_app
from task_sync.outbox import SyncQueue
from task_sync.repositories import InMemoryRepository, Repository
from task_sync.settings import Settings
from task_sync.sync_client import RemoteReconcilerClient
from task_sync.sync_engine import SyncEngine
from task_sync.task_store import TaskStore

REMOTE_BASE_URL = "http://remote.test/api"

BatchReply = Union[Dict[str, Any], httpx.Response, Exception]


def accept_all(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Server reply that accepts every submitted item."""
    return {
        "processed_items": [
            {"client_id": item["id"], "status": "success"} for item in payload["items"]
        ]
    }


def _read_timeout(request: httpx.Request) -> Optional[float]:
    return request.extensions.get("timeout", {}).get("read")


class FakeReconciler:
    """
    Stand-in for the remote service, served through httpx.MockTransport.

    Set ``online`` or ``health_error`` to control the probe, and
    ``batch_handler`` (payload -> dict | Response | Exception) to script the
    batch endpoint. Every batch payload received is kept in ``batches`` and
    the read timeout of every request in ``timeouts``.
    """

    def __init__(self) -> None:
        self.online = True
        self.health_error: Optional[Exception] = None
        self.batch_handler: Callable[[Dict[str, Any]], BatchReply] = accept_all
        self.batches: List[Dict[str, Any]] = []
        self.health_calls = 0
        self.timeouts: Dict[str, List[Optional[float]]] = {"health": [], "batch": []}
        self._lock = threading.Lock()

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/health"):
            with self._lock:
                self.health_calls += 1
                self.timeouts["health"].append(_read_timeout(request))
            if self.health_error is not None:
                raise self.health_error
            return httpx.Response(200 if self.online else 503, json={"status": "ok"})

        if path.endswith("/batch") and request.method == "POST":
            payload = json.loads(request.content)
            with self._lock:
                self.batches.append(payload)
                self.timeouts["batch"].append(_read_timeout(request))
            reply = self.batch_handler(payload)
            if isinstance(reply, Exception):
                raise reply
            if isinstance(reply, httpx.Response):
                return reply
            return httpx.Response(200, json=reply)

        return httpx.Response(404)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


@pytest.fixture(params=["memory", "sqlite"])
def repo(request, tmp_path) -> Repository:
    if request.param == "sqlite":
        return SQLiteRepository(str(tmp_path / "tasks.db"))
    return InMemoryRepository()


@pytest.fixture
def queue(repo: Repository) -> SyncQueue:
    return SyncQueue(repo)


@pytest.fixture
def store(repo: Repository, queue: SyncQueue) -> TaskStore:
    return TaskStore(repo, queue)


@pytest.fixture
def remote() -> FakeReconciler:
    return FakeReconciler()


@pytest.fixture
def reconciler_client(remote: FakeReconciler):
    client = RemoteReconcilerClient(REMOTE_BASE_URL, request_timeout=2.0, transport=remote.transport)
    yield client
    client.close()


@pytest.fixture
def make_engine(store, queue, reconciler_client, repo):
    def factory(**kwargs: Any) -> SyncEngine:
        return SyncEngine(store, queue, reconciler_client, repo, **kwargs)

    return factory


@pytest.fixture
def engine(make_engine) -> SyncEngine:
    return make_engine()


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "persistence_backend": "memory",
        "sqlite_db_path": ":memory:",
        "cors_allow_origins": ["*"],
        "sync_api_base_url": REMOTE_BASE_URL,
        "sync_batch_size": 50,
        "sync_probe_timeout": 1.0,
        "sync_request_timeout": 2.0,
        "sync_max_retries": 5,
        "sync_interval_seconds": 0.0,
        "log_level": "WARNING",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def container(remote: FakeReconciler) -> ServiceContainer:
    return build_container(
        make_settings(), repository=InMemoryRepository(), transport=remote.transport
    )


@pytest.fixture
def api(container: ServiceContainer):
    with TestClient(create_app(container=container)) as client:
        yield client


@pytest.fixture
def settings_factory() -> Callable[..., Settings]:
    return make_settings
