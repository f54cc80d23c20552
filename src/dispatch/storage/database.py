"""
Task Store: Durable Record of Collaboration Tasks

The in-memory lifecycle manager is authoritative; this store is a best-effort
mirror used for history and for restoring non-terminal tasks after a restart.
Every failure surfaces as PersistenceError so callers can log and retry.

Usage:
    async with SQLiteTaskStore("~/.dispatch/data/dispatch.db") as store:
        await store.insert(task)
        active = await store.load_active()
"""

import json
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import aiosqlite

from dispatch.delegation.models import TERMINAL_STATUSES, CollaborationTask, TaskStatus
from dispatch.errors import PersistenceError

IN_MEMORY = ":memory:"

_COLUMNS = (
    "id",
    "source_worker_id",
    "target_worker_id",
    "type",
    "description",
    "payload",
    "priority",
    "status",
    "result",
    "feedback",
    "requested_at",
    "responded_at",
    "completed_at",
    "metadata",
)


class TaskStore(Protocol):
    """Datastore contract the engine persists tasks through."""

    async def insert(self, task: CollaborationTask) -> None: ...

    async def update(self, task: CollaborationTask) -> None: ...

    async def get(self, task_id: str) -> Optional[CollaborationTask]: ...

    async def query(
        self,
        status: Optional[TaskStatus] = None,
        worker_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[CollaborationTask]: ...

    async def load_active(self) -> List[CollaborationTask]: ...

    async def close(self) -> None: ...


def _row_values(task: CollaborationTask) -> tuple:
    return (
        task.id,
        task.source_worker_id,
        task.target_worker_id,
        task.type.value,
        task.description,
        json.dumps(task.payload, default=str),
        task.priority.value,
        task.status.value,
        json.dumps(task.result, default=str),
        task.feedback,
        task.requested_at,
        task.responded_at,
        task.completed_at,
        json.dumps(task.metadata, default=str),
    )


def _task_from_row(row: Any) -> CollaborationTask:
    data: Dict[str, Any] = dict(zip(_COLUMNS, row))
    for key in ("payload", "result", "metadata"):
        data[key] = json.loads(data[key]) if data[key] is not None else None
    return CollaborationTask.from_dict(data)


class SQLiteTaskStore:
    """
    aiosqlite-backed task store.

    Table ``agent_collaborations`` holds one row per task, keyed by task id.
    Timestamps are the engine's monotonic readings; ``updated_at`` records
    wall-clock time of the last write.
    """

    def __init__(self, db_path: Optional[str] = None) -> None:
        self.db_path = str(db_path) if db_path else IN_MEMORY
        if self.db_path != IN_MEMORY:
            path = Path(self.db_path).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            self.db_path = str(path)
        self._db: Optional[aiosqlite.Connection] = None

    async def __aenter__(self) -> "SQLiteTaskStore":
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type],
        exc_val: Optional[BaseException],
        exc_tb: Optional[object],
    ) -> None:
        await self.close()

    async def open(self) -> None:
        if self._db is not None:
            return
        try:
            self._db = await aiosqlite.connect(self.db_path)
            await self._init_db(self._db)
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Cannot open task store at {self.db_path}: {exc}") from exc

    async def _init_db(self, db: aiosqlite.Connection) -> None:
        if self.db_path != IN_MEMORY:
            await db.execute("PRAGMA journal_mode=WAL")
        await db.execute("""
            CREATE TABLE IF NOT EXISTS agent_collaborations (
                id TEXT PRIMARY KEY,
                source_worker_id TEXT NOT NULL,
                target_worker_id TEXT NOT NULL,
                type TEXT NOT NULL,
                description TEXT NOT NULL,
                payload TEXT,
                priority TEXT NOT NULL,
                status TEXT NOT NULL,
                result TEXT,
                feedback TEXT,
                requested_at REAL NOT NULL,
                responded_at REAL,
                completed_at REAL,
                metadata TEXT DEFAULT '{}',
                updated_at TEXT NOT NULL
            )
        """)
        await db.execute("""
            CREATE INDEX IF NOT EXISTS idx_collab_status
            ON agent_collaborations(status)
        """)
        await db.execute("""
            CREATE INDEX IF NOT EXISTS idx_collab_target
            ON agent_collaborations(target_worker_id)
        """)
        await db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise PersistenceError("Task store is not open")
        return self._db

    async def insert(self, task: CollaborationTask) -> None:
        """Insert a new task row. Fails if the id already exists."""
        db = self._conn()
        placeholders = ", ".join("?" for _ in range(len(_COLUMNS) + 1))
        try:
            await db.execute(
                f"INSERT INTO agent_collaborations ({', '.join(_COLUMNS)}, updated_at) "
                f"VALUES ({placeholders})",
                (*_row_values(task), _now()),
            )
            await db.commit()
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Insert of task {task.id} failed: {exc}") from exc

    async def update(self, task: CollaborationTask) -> None:
        """Write the task's current state, inserting the row if it is missing."""
        db = self._conn()
        placeholders = ", ".join("?" for _ in range(len(_COLUMNS) + 1))
        assignments = ", ".join(f"{col} = excluded.{col}" for col in _COLUMNS[1:])
        try:
            await db.execute(
                f"INSERT INTO agent_collaborations ({', '.join(_COLUMNS)}, updated_at) "
                f"VALUES ({placeholders}) "
                f"ON CONFLICT(id) DO UPDATE SET {assignments}, updated_at = excluded.updated_at",
                (*_row_values(task), _now()),
            )
            await db.commit()
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Update of task {task.id} failed: {exc}") from exc

    async def get(self, task_id: str) -> Optional[CollaborationTask]:
        db = self._conn()
        try:
            cursor = await db.execute(
                f"SELECT {', '.join(_COLUMNS)} FROM agent_collaborations WHERE id = ?",
                (task_id,),
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Lookup of task {task_id} failed: {exc}") from exc
        return _task_from_row(row) if row else None

    async def query(
        self,
        status: Optional[TaskStatus] = None,
        worker_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[CollaborationTask]:
        """Tasks newest first, optionally filtered by status or by worker (source or target)."""
        db = self._conn()
        clauses: List[str] = []
        params: List[Any] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if worker_id is not None:
            clauses.append("(source_worker_id = ? OR target_worker_id = ?)")
            params.extend([worker_id, worker_id])
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        try:
            cursor = await db.execute(
                f"SELECT {', '.join(_COLUMNS)} FROM agent_collaborations {where} "
                "ORDER BY requested_at DESC LIMIT ?",
                params,
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Task query failed: {exc}") from exc
        return [_task_from_row(row) for row in rows]

    async def load_active(self) -> List[CollaborationTask]:
        """Every task not yet in a terminal state, oldest first."""
        db = self._conn()
        terminal = sorted(s.value for s in TERMINAL_STATUSES)
        try:
            cursor = await db.execute(
                f"SELECT {', '.join(_COLUMNS)} FROM agent_collaborations "
                f"WHERE status NOT IN ({', '.join('?' for _ in terminal)}) "
                "ORDER BY requested_at ASC",
                terminal,
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Loading active tasks failed: {exc}") from exc
        return [_task_from_row(row) for row in rows]


def _now() -> str:
    return time.strftime("%Y-%m-%d %H:%M:%S", time.gmtime())
