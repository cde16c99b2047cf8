"""SQLite-backed task storage and the indices derived from it."""

from __future__ import annotations

import contextlib
import json
import sqlite3
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Any

from bounty_market_service.services.indexed_set import IndexedSetStore
from bounty_market_service.services.submission_ledger import SubmissionLedger
from bounty_market_service.services.task_states import STATUS_CODES, STATUS_NAMES

if TYPE_CHECKING:
    from collections.abc import Iterator


class DuplicateTaskError(Exception):
    """Raised when attempting to insert a task with a duplicate task_id."""


class TaskStore:
    """
    SQLite-backed storage for tasks, submissions, and the company and
    invited-user indices.

    Writes never commit on their own. Lifecycle calls wrap their writes in
    ``transaction()`` so a call persists all of its changes or none.
    """

    _TASK_COLUMNS: tuple[str, ...] = (
        "task_id",
        "company_id",
        "title",
        "description",
        "required_skills",
        "task_type",
        "invited_accounts",
        "valid_till",
        "reference",
        "reference_hash",
        "deadline",
        "person_assigned",
        "status",
        "token_kind",
        "reward",
        "created_at",
        "funded_bytes",
    )
    _TASK_COLUMNS_SQL = ", ".join(_TASK_COLUMNS)
    _TASK_INSERT_SQL = (
        f"INSERT INTO tasks ({_TASK_COLUMNS_SQL}) "  # nosec B608
        f"VALUES ({', '.join('?' for _ in _TASK_COLUMNS)})"
    )
    _TASK_SELECT_BASE_SQL = f"SELECT {_TASK_COLUMNS_SQL} FROM tasks"  # nosec B608

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA busy_timeout=5000")
        self._init_schema()
        self.company_tasks = IndexedSetStore(
            self._db, self._lock, table="company_tasks", key_column="company_id", member_column="task_id"
        )
        self.invited_tasks = IndexedSetStore(
            self._db, self._lock, table="invited_tasks", key_column="account_id", member_column="task_id"
        )
        self.submissions = SubmissionLedger(self._db, self._lock)

    @property
    def connection(self) -> sqlite3.Connection:
        return self._db

    @property
    def lock(self) -> RLock:
        return self._lock

    def _init_schema(self) -> None:
        with self._lock:
            self._db.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    task_id TEXT PRIMARY KEY,
                    company_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    required_skills TEXT NOT NULL,
                    task_type TEXT NOT NULL,
                    invited_accounts TEXT,
                    valid_till INTEGER,
                    reference TEXT NOT NULL,
                    reference_hash TEXT NOT NULL,
                    deadline INTEGER NOT NULL,
                    person_assigned TEXT,
                    status INTEGER NOT NULL,
                    token_kind TEXT NOT NULL,
                    reward TEXT NOT NULL,
                    created_at INTEGER NOT NULL,
                    funded_bytes INTEGER NOT NULL
                )
                """
            )

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        """Run the enclosed writes atomically; any exception rolls all of them back."""
        with self._lock:
            self._db.execute("BEGIN IMMEDIATE")
            try:
                yield
            except BaseException:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise
            self._db.execute("COMMIT")

    def _row_to_task(self, row: sqlite3.Row) -> dict[str, Any]:
        task = {column: row[column] for column in self._TASK_COLUMNS}
        invited = task["invited_accounts"]
        task["invited_accounts"] = json.loads(invited) if invited is not None else None
        task["reward"] = int(task["reward"])
        task["status"] = STATUS_NAMES[task["status"]]
        return task

    def insert_task(self, task_data: dict[str, Any]) -> None:
        """Insert a new task row; raises DuplicateTaskError if the id is taken."""
        row = dict(task_data)
        invited = row["invited_accounts"]
        row["invited_accounts"] = (
            json.dumps(sorted(invited), separators=(",", ":")) if invited is not None else None
        )
        row["reward"] = str(row["reward"])
        row["status"] = STATUS_CODES[row["status"]]
        values = tuple(row[column] for column in self._TASK_COLUMNS)

        with self._lock:
            try:
                self._db.execute(self._TASK_INSERT_SQL, values)
            except sqlite3.IntegrityError as exc:
                if "unique" in str(exc).lower():
                    raise DuplicateTaskError(
                        f"A task with task_id={task_data['task_id']} already exists"
                    ) from exc
                raise

    def get_task(self, task_id: str) -> dict[str, Any] | None:
        """Fetch a task by ID."""
        with self._lock:
            row = self._db.execute(
                self._TASK_SELECT_BASE_SQL + " WHERE task_id = ?", (task_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def get_tasks(self, task_ids: list[str]) -> list[dict[str, Any]]:
        """Fetch several tasks, preserving the order of task_ids and skipping misses."""
        tasks = []
        for task_id in task_ids:
            task = self.get_task(task_id)
            if task is not None:
                tasks.append(task)
        return tasks

    def update_task(
        self,
        task_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None = None,
    ) -> int:
        """Update task columns and return the number of affected rows."""
        if len(updates) == 0:
            return 0

        if any(column not in self._TASK_COLUMNS for column in updates):
            msg = "Attempted to update unknown task column"
            raise ValueError(msg)
        if "reward" in updates or "task_type" in updates or "invited_accounts" in updates:
            msg = "Reward and task type are fixed at creation"
            raise ValueError(msg)

        updates = dict(updates)
        if "status" in updates:
            updates["status"] = STATUS_CODES[updates["status"]]

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = list(updates.values())

        query = "UPDATE tasks SET " + set_clause + " WHERE task_id = ?"  # nosec B608
        params.append(task_id)
        if expected_status is not None:
            query += " AND status = ?"
            params.append(STATUS_CODES[expected_status])

        with self._lock:
            cursor = self._db.execute(query, params)
        return int(cursor.rowcount)

    def delete_task(self, task_id: str) -> int:
        with self._lock:
            cursor = self._db.execute("DELETE FROM tasks WHERE task_id = ?", (task_id,))
        return int(cursor.rowcount)

    def list_tasks(self, offset: int, limit: int) -> list[dict[str, Any]]:
        """List tasks in creation order."""
        query = self._TASK_SELECT_BASE_SQL + " ORDER BY created_at, task_id LIMIT ? OFFSET ?"
        with self._lock:
            rows = self._db.execute(query, (limit, offset)).fetchall()
        return [self._row_to_task(row) for row in rows]

    def iter_tasks(self) -> list[dict[str, Any]]:
        """Every task in the store."""
        with self._lock:
            rows = self._db.execute(self._TASK_SELECT_BASE_SQL).fetchall()
        return [self._row_to_task(row) for row in rows]

    def count_tasks(self) -> int:
        """Count total tasks."""
        with self._lock:
            row = self._db.execute("SELECT COUNT(*) FROM tasks").fetchone()
        return int(row[0]) if row is not None else 0

    def count_tasks_by_status(self) -> dict[str, int]:
        """Count tasks grouped by status."""
        with self._lock:
            rows = self._db.execute("SELECT status, COUNT(*) FROM tasks GROUP BY status").fetchall()
        return {STATUS_NAMES[row[0]]: int(row[1]) for row in rows}

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
