from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Generator, Iterator, List, Optional, Tuple

from .models import SyncQueueEntity, TaskEntity
from .repositories import QueueQuery, Repository, TaskQuery

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _TaskCols:
    table: str = "tasks"
    id: str = "id"
    title: str = "title"
    description: str = "description"
    completed: str = "completed"
    is_deleted: str = "is_deleted"
    created_at: str = "created_at"
    updated_at: str = "updated_at"
    sync_status: str = "sync_status"
    server_id: str = "server_id"
    last_synced_at: str = "last_synced_at"


@dataclass(frozen=True)
class _QueueCols:
    table: str = "sync_queue"
    id: str = "id"
    task_id: str = "task_id"
    operation: str = "operation"
    data: str = "data"
    created_at: str = "created_at"
    retry_count: str = "retry_count"
    error_message: str = "error_message"


_T = _TaskCols()
_Q = _QueueCols()

_TASK_COLUMNS = (
    _T.id, _T.title, _T.description, _T.completed, _T.is_deleted, _T.created_at,
    _T.updated_at, _T.sync_status, _T.server_id, _T.last_synced_at,
)
_QUEUE_COLUMNS = (
    _Q.id, _Q.task_id, _Q.operation, _Q.data, _Q.created_at, _Q.retry_count, _Q.error_message,
)
_DATETIME_COLUMNS = {_T.created_at, _T.updated_at, _T.last_synced_at}
_BOOL_COLUMNS = {_T.completed, _T.is_deleted}


def _dt_to_db(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    # Fixed-width text keeps lexical order equal to chronological order.
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _dt_from_db(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


class SQLiteRepository(Repository):
    """
    SQLite repository implementing the Repository interface.

    Each call opens its own connection unless it runs inside transaction(),
    in which case the calling thread reuses the transaction's connection.
    """

    def __init__(self, db_path: str) -> None:
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._db_path = db_path
        self._local = threading.local()
        self._init_db()
        logger.info("SQLiteRepository ready db=%s", self._db_path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=30.0)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _conn(self) -> Generator[sqlite3.Connection, None, None]:
        active = getattr(self._local, "conn", None)
        if active is not None:
            yield active
            return
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if getattr(self._local, "conn", None) is not None:
            # Nested: the outer block owns commit and rollback.
            yield
            return
        conn = self._connect()
        conn.execute("BEGIN IMMEDIATE")
        self._local.conn = conn
        try:
            yield
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            self._local.conn = None
            conn.close()

    def _init_db(self) -> None:
        with self._conn() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {_T.table} (
                    {_T.id} TEXT PRIMARY KEY,
                    {_T.title} TEXT NOT NULL,
                    {_T.description} TEXT NULL,
                    {_T.completed} INTEGER NOT NULL DEFAULT 0,
                    {_T.is_deleted} INTEGER NOT NULL DEFAULT 0,
                    {_T.created_at} TEXT NOT NULL,
                    {_T.updated_at} TEXT NOT NULL,
                    {_T.sync_status} TEXT NOT NULL DEFAULT 'pending',
                    {_T.server_id} TEXT NULL,
                    {_T.last_synced_at} TEXT NULL
                )
                """
            )
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {_Q.table} (
                    {_Q.id} TEXT PRIMARY KEY,
                    {_Q.task_id} TEXT NOT NULL,
                    {_Q.operation} TEXT NOT NULL,
                    {_Q.data} TEXT NOT NULL,
                    {_Q.created_at} TEXT NOT NULL,
                    {_Q.retry_count} INTEGER NOT NULL DEFAULT 0,
                    {_Q.error_message} TEXT NULL
                )
                """
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{_T.table}_sync_status ON {_T.table}({_T.sync_status})"
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{_T.table}_created_at ON {_T.table}({_T.created_at})"
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{_Q.table}_created_at ON {_Q.table}({_Q.created_at})"
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{_Q.table}_task_id ON {_Q.table}({_Q.task_id})"
            )

    # ---- row mapping ----

    def _row_to_task(self, row: sqlite3.Row) -> TaskEntity:
        return {
            "id": str(row[_T.id]),
            "title": str(row[_T.title]),
            "description": row[_T.description] if row[_T.description] is not None else None,
            "completed": bool(row[_T.completed]),
            "is_deleted": bool(row[_T.is_deleted]),
            "created_at": _dt_from_db(row[_T.created_at]),  # type: ignore
            "updated_at": _dt_from_db(row[_T.updated_at]),  # type: ignore
            "sync_status": row[_T.sync_status],
            "server_id": row[_T.server_id],
            "last_synced_at": _dt_from_db(row[_T.last_synced_at]),
        }

    def _row_to_queue_item(self, row: sqlite3.Row) -> SyncQueueEntity:
        return {
            "id": str(row[_Q.id]),
            "task_id": str(row[_Q.task_id]),
            "operation": row[_Q.operation],
            "data": json.loads(row[_Q.data]),
            "created_at": _dt_from_db(row[_Q.created_at]),  # type: ignore
            "retry_count": int(row[_Q.retry_count] or 0),
            "error_message": row[_Q.error_message],
        }

    @staticmethod
    def _task_value(column: str, value: Any) -> Any:
        if column in _DATETIME_COLUMNS:
            return _dt_to_db(value)
        if column in _BOOL_COLUMNS:
            return 1 if value else 0
        return value

    @staticmethod
    def _queue_value(column: str, value: Any) -> Any:
        if column == _Q.created_at:
            return _dt_to_db(value)
        if column == _Q.data:
            return json.dumps(value, ensure_ascii=False, default=str)
        return value

    # ---- tasks ----

    def get_task(self, task_id: str) -> Optional[TaskEntity]:
        with self._conn() as conn:
            row = conn.execute(f"SELECT * FROM {_T.table} WHERE {_T.id} = ?", (task_id,)).fetchone()
            return self._row_to_task(row) if row else None

    def insert_task(self, task: TaskEntity) -> None:
        placeholders = ", ".join("?" for _ in _TASK_COLUMNS)
        values = [self._task_value(c, task[c]) for c in _TASK_COLUMNS]  # type: ignore[literal-required]
        with self._conn() as conn:
            conn.execute(
                f"INSERT INTO {_T.table} ({', '.join(_TASK_COLUMNS)}) VALUES ({placeholders})",
                values,
            )

    def update_task(self, task_id: str, fields: Dict[str, Any]) -> Optional[TaskEntity]:
        columns = [c for c in fields if c in _TASK_COLUMNS and c != _T.id]
        with self._conn() as conn:
            if columns:
                assignments = ", ".join(f"{c} = ?" for c in columns)
                conn.execute(
                    f"UPDATE {_T.table} SET {assignments} WHERE {_T.id} = ?",
                    [*(self._task_value(c, fields[c]) for c in columns), task_id],
                )
            row = conn.execute(f"SELECT * FROM {_T.table} WHERE {_T.id} = ?", (task_id,)).fetchone()
            return self._row_to_task(row) if row else None

    def delete_task(self, task_id: str) -> bool:
        with self._conn() as conn:
            cur = conn.execute(f"DELETE FROM {_T.table} WHERE {_T.id} = ?", (task_id,))
            return cur.rowcount > 0

    def list_tasks(self, query: Optional[TaskQuery] = None) -> Tuple[List[TaskEntity], int]:
        q = query or TaskQuery()
        clauses = []
        params: list = []

        if not q.include_deleted:
            clauses.append(f"{_T.is_deleted} = 0")

        if q.sync_statuses is not None:
            statuses = list(q.sync_statuses)
            if not statuses:
                return [], 0
            clauses.append(f"{_T.sync_status} IN ({', '.join('?' for _ in statuses)})")
            params.extend(statuses)

        where_sql = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with self._conn() as conn:
            count_row = conn.execute(
                f"SELECT COUNT(*) as cnt FROM {_T.table} {where_sql}", params
            ).fetchone()
            total = int(count_row["cnt"]) if count_row else 0

            page_sql = ""
            page_params: list = []
            if q.limit is not None:
                page_sql = "LIMIT ? OFFSET ?"
                page_params = [max(q.limit, 0), max(q.offset, 0)]
            elif q.offset:
                page_sql = "LIMIT -1 OFFSET ?"
                page_params = [max(q.offset, 0)]

            rows = conn.execute(
                f"""
                SELECT * FROM {_T.table}
                {where_sql}
                ORDER BY {_T.created_at} ASC, rowid ASC
                {page_sql}
                """,
                [*params, *page_params],
            ).fetchall()
            return [self._row_to_task(r) for r in rows], total

    # ---- outbox ----

    def insert_queue_item(self, item: SyncQueueEntity) -> None:
        placeholders = ", ".join("?" for _ in _QUEUE_COLUMNS)
        values = [self._queue_value(c, item[c]) for c in _QUEUE_COLUMNS]  # type: ignore[literal-required]
        with self._conn() as conn:
            conn.execute(
                f"INSERT INTO {_Q.table} ({', '.join(_QUEUE_COLUMNS)}) VALUES ({placeholders})",
                values,
            )

    def get_queue_item(self, item_id: str) -> Optional[SyncQueueEntity]:
        with self._conn() as conn:
            row = conn.execute(f"SELECT * FROM {_Q.table} WHERE {_Q.id} = ?", (item_id,)).fetchone()
            return self._row_to_queue_item(row) if row else None

    def update_queue_item(self, item_id: str, fields: Dict[str, Any]) -> Optional[SyncQueueEntity]:
        columns = [c for c in fields if c in _QUEUE_COLUMNS and c != _Q.id]
        with self._conn() as conn:
            if columns:
                assignments = ", ".join(f"{c} = ?" for c in columns)
                conn.execute(
                    f"UPDATE {_Q.table} SET {assignments} WHERE {_Q.id} = ?",
                    [*(self._queue_value(c, fields[c]) for c in columns), item_id],
                )
            row = conn.execute(f"SELECT * FROM {_Q.table} WHERE {_Q.id} = ?", (item_id,)).fetchone()
            return self._row_to_queue_item(row) if row else None

    def delete_queue_item(self, item_id: str) -> bool:
        with self._conn() as conn:
            cur = conn.execute(f"DELETE FROM {_Q.table} WHERE {_Q.id} = ?", (item_id,))
            return cur.rowcount > 0

    @staticmethod
    def _queue_where(q: QueueQuery) -> Tuple[str, list]:
        clauses = []
        params: list = []
        if q.task_id is not None:
            clauses.append(f"{_Q.task_id} = ?")
            params.append(q.task_id)
        if q.min_retries is not None:
            clauses.append(f"{_Q.retry_count} >= ?")
            params.append(q.min_retries)
        return (f"WHERE {' AND '.join(clauses)}" if clauses else ""), params

    def list_queue_items(self, query: Optional[QueueQuery] = None) -> List[SyncQueueEntity]:
        q = query or QueueQuery()
        where_sql, params = self._queue_where(q)
        limit_sql = ""
        if q.limit is not None:
            limit_sql = "LIMIT ? OFFSET ?"
            params.extend([max(q.limit, 0), max(q.offset, 0)])
        elif q.offset:
            limit_sql = "LIMIT -1 OFFSET ?"
            params.append(max(q.offset, 0))
        with self._conn() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM {_Q.table}
                {where_sql}
                ORDER BY {_Q.created_at} ASC, rowid ASC
                {limit_sql}
                """,
                params,
            ).fetchall()
            return [self._row_to_queue_item(r) for r in rows]

    def count_queue_items(self, query: Optional[QueueQuery] = None) -> int:
        where_sql, params = self._queue_where(query or QueueQuery())
        with self._conn() as conn:
            row = conn.execute(f"SELECT COUNT(*) as cnt FROM {_Q.table} {where_sql}", params).fetchone()
            return int(row["cnt"]) if row else 0
