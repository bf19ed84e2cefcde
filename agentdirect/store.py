"""Task store: the only place task records are mutated.

Every backend applies ``update()`` atomically per task id. Mutators run on a
private copy that is committed whole, so a reader sees either the previous
record or the next one, never a half-applied change. Terminal tasks are frozen:
updates against them are discarded, not applied.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from agentdirect.faults import TaskNotFoundError
from agentdirect.schemas import Task, TaskState

logger = logging.getLogger(__name__)

# Returning False from a mutator discards the draft.
Mutator = Callable[[Task], "bool | None"]


@dataclass
class UpdateResult:
    """Outcome of a store update."""

    task: Task
    applied: bool


class TaskStore:
    """Per-task locking and the commit rules shared by every backend."""

    def __init__(self) -> None:
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, task_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(task_id)
            if lock is None:
                lock = self._locks[task_id] = threading.Lock()
            return lock

    def create(self, task: Task) -> Task:
        """Insert a new task. Raises ValueError if the id is taken."""
        with self._lock_for(task.id):
            if self._load(task.id) is not None:
                raise ValueError(f"Task already exists: {task.id}")
            self._save(task)
        logger.debug(f"Created task {task.id} ({task.status.state.value})")
        return task.model_copy(deep=True)

    def get(self, task_id: str) -> Task | None:
        """Snapshot of a task, or None if unknown."""
        return self._load(task_id)

    def update(self, task_id: str, mutator: Mutator) -> UpdateResult:
        """Apply ``mutator`` to a copy of the task and commit it atomically.

        Raises:
            TaskNotFoundError: the task id is unknown
            ValueError: the mutator rewrote or truncated existing history
        """
        # Tasks are never deleted, so a record seen here is still there under the lock.
        if self._load(task_id) is None:
            raise TaskNotFoundError(task_id)

        with self._lock_for(task_id):
            current = self._load(task_id)
            if current is None:
                raise TaskNotFoundError(task_id)
            if current.is_terminal:
                logger.debug(f"Discarding update to terminal task {task_id}")
                return UpdateResult(task=current, applied=False)

            draft = current.model_copy(deep=True)
            if mutator(draft) is False:
                return UpdateResult(task=current, applied=False)

            _check_history(current, draft)
            self._save(draft)
            return UpdateResult(task=draft.model_copy(deep=True), applied=True)

    def list(self, state: TaskState | None = None) -> list[Task]:
        """All tasks, optionally filtered by state."""
        tasks = self._load_all()
        if state is not None:
            tasks = [t for t in tasks if t.status.state == state]
        return tasks

    def _load(self, task_id: str) -> Task | None:
        raise NotImplementedError

    def _load_all(self) -> list[Task]:
        raise NotImplementedError

    def _save(self, task: Task) -> None:
        raise NotImplementedError


def _check_history(current: Task, draft: Task) -> None:
    """History is append-only: the old prefix must survive unchanged."""
    if draft.id != current.id:
        raise ValueError("Task id is immutable")
    if draft.history[: len(current.history)] != current.history:
        raise ValueError(f"History of task {current.id} may only be appended to")


class InMemoryTaskStore(TaskStore):
    """Process-local task store."""

    def __init__(self) -> None:
        super().__init__()
        self._tasks: dict[str, Task] = {}

    def _load(self, task_id: str) -> Task | None:
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task is not None else None

    def _load_all(self) -> list[Task]:
        return [t.model_copy(deep=True) for t in list(self._tasks.values())]

    def _save(self, task: Task) -> None:
        # Whole-record replacement; readers never see a partial write.
        self._tasks[task.id] = task.model_copy(deep=True)

    def __len__(self) -> int:
        return len(self._tasks)


class SqliteTaskStore(TaskStore):
    """Task store with SQLite backend, one row per task."""

    def __init__(self, db_path: Path | str, namespace: str = "default"):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file
            namespace: Partition key, so several agents can share one file
        """
        super().__init__()
        self.db_path = Path(db_path)
        self.namespace = namespace

        # Ensure parent directory exists
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_db()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    namespace TEXT NOT NULL,
                    task_id TEXT NOT NULL,
                    state TEXT NOT NULL,
                    task_json TEXT NOT NULL,
                    created_at INTEGER NOT NULL,
                    updated_at INTEGER NOT NULL,
                    PRIMARY KEY (namespace, task_id)
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_tasks_created
                ON tasks (namespace, created_at)
            """)
            conn.commit()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection."""
        conn = sqlite3.connect(str(self.db_path), timeout=10.0)
        conn.row_factory = sqlite3.Row
        return conn

    def _load(self, task_id: str) -> Task | None:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT task_json FROM tasks WHERE namespace = ? AND task_id = ?",
                (self.namespace, task_id),
            ).fetchone()
        if row is None:
            return None
        return Task.model_validate_json(row["task_json"])

    def _load_all(self) -> list[Task]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT task_json FROM tasks WHERE namespace = ? ORDER BY created_at ASC",
                (self.namespace,),
            ).fetchall()
        return [Task.model_validate_json(row["task_json"]) for row in rows]

    def _save(self, task: Task) -> None:
        now = int(time.time() * 1000000)  # Microseconds for better precision
        task_json = task.model_dump_json(by_alias=True, exclude_none=True)

        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO tasks (namespace, task_id, state, task_json, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(namespace, task_id) DO UPDATE SET
                    state = excluded.state,
                    task_json = excluded.task_json,
                    updated_at = excluded.updated_at
                """,
                (self.namespace, task.id, task.status.state.value, task_json, now, now),
            )
            conn.commit()


def create_task_store(
    backend: str = "memory",
    db_path: Path | str | None = None,
    namespace: str = "default",
) -> TaskStore:
    """Build a task store for the configured backend."""
    if backend == "sqlite":
        if db_path is None:
            raise ValueError("sqlite task store requires a database path")
        logger.info(f"Using SQLite task store at {db_path} (namespace={namespace})")
        return SqliteTaskStore(db_path, namespace=namespace)
    return InMemoryTaskStore()
