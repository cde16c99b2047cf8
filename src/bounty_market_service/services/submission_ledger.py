"""Per-task submission ledger: task_id -> submitter -> submission."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from bounty_market_service.services.indexed_set import DuplicateMemberError, IndexedSetStore

if TYPE_CHECKING:
    import sqlite3
    from threading import RLock


class DuplicateSubmissionError(Exception):
    """Raised when a submitter already has a submission for a task."""

    def __init__(self, task_id: str, account_id: str) -> None:
        super().__init__(f"{account_id} already submitted work for {task_id}")
        self.task_id = task_id
        self.account_id = account_id


class SubmissionLedger:
    """
    Submissions keyed by (task_id, account_id).

    The key set of a task's ledger doubles as the task -> submitter index.
    Removing the last submission of a task leaves no ledger behind.
    """

    TABLE = "submissions"

    def __init__(self, db: sqlite3.Connection, lock: RLock) -> None:
        self._entries = IndexedSetStore(
            db,
            lock,
            table=self.TABLE,
            key_column="task_id",
            member_column="account_id",
            value_columns=("submission_reference", "submission_reference_hash"),
        )

    def insert(self, task_id: str, account_id: str, submission: dict[str, Any]) -> None:
        """Record a submission; raises DuplicateSubmissionError on resubmission."""
        try:
            self._entries.add(
                task_id,
                account_id,
                {
                    "submission_reference": submission["submission_reference"],
                    "submission_reference_hash": submission["submission_reference_hash"],
                },
            )
        except DuplicateMemberError as exc:
            raise DuplicateSubmissionError(task_id, account_id) from exc

    def get(self, task_id: str, account_id: str) -> dict[str, Any] | None:
        values = self._entries.get(task_id, account_id)
        if values is None:
            return None
        return {"task_id": task_id, "account_id": account_id, "submission": values}

    def remove(self, task_id: str, account_id: str) -> bool:
        """Remove one submission; raises KeyNotFoundError if the task has no ledger."""
        return self._entries.remove(task_id, account_id)

    def remove_all(self, task_id: str) -> int:
        return self._entries.remove_key(task_id)

    def submitters(self, task_id: str) -> list[str]:
        return self._entries.members(task_id)

    def page(self, task_id: str, offset: int, limit: int) -> list[dict[str, Any]]:
        return [
            {"task_id": task_id, "account_id": account_id, "submission": values}
            for account_id, values in self._entries.entries(task_id, offset, limit)
        ]

    def count(self, task_id: str) -> int:
        return self._entries.count(task_id)

    def has_ledger(self, task_id: str) -> bool:
        return self._entries.has_key(task_id)
