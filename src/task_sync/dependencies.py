from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Request

from .outbox import SyncQueue
from .repositories import Repository, get_repository
from .settings import Settings
from .sync_client import RemoteReconcilerClient
from .sync_engine import SyncEngine
from .task_store import TaskStore


@dataclass
class ServiceContainer:
    """Everything one app instance needs, wired once at startup."""

    settings: Settings
    repository: Repository
    sync_queue: SyncQueue
    task_store: TaskStore
    client: RemoteReconcilerClient
    sync_engine: SyncEngine

    def close(self) -> None:
        self.client.close()


# PUBLIC_INTERFACE
def build_container(
    settings: Settings,
    repository: Optional[Repository] = None,
    transport: Optional[httpx.BaseTransport] = None,
) -> ServiceContainer:
    """
    Construct the services by plain constructor injection.

    The task store only sees the outbox's enqueue capability; the engine
    sees the store and the outbox. Nothing refers back to the engine.
    """
    repo = repository or get_repository(settings)
    queue = SyncQueue(repo)
    store = TaskStore(repo, queue)
    client = RemoteReconcilerClient(
        settings.sync_api_base_url,
        request_timeout=settings.sync_request_timeout,
        transport=transport,
    )
    engine = SyncEngine(
        store,
        queue,
        client,
        repo,
        batch_size=settings.sync_batch_size,
        probe_timeout=settings.sync_probe_timeout,
        max_retries=settings.sync_max_retries,
    )
    return ServiceContainer(
        settings=settings,
        repository=repo,
        sync_queue=queue,
        task_store=store,
        client=client,
        sync_engine=engine,
    )


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_task_store(request: Request) -> TaskStore:
    return get_container(request).task_store


def get_sync_engine(request: Request) -> SyncEngine:
    return get_container(request).sync_engine
