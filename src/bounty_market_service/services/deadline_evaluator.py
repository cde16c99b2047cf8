"""Lazy evaluation of time-based task state transitions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

from bounty_market_service.logging import get_logger
from bounty_market_service.services.task_states import (
    EXPIRED,
    INVITE_ONLY,
    OPEN,
    OVERDUE,
    PENDING,
    check_transition,
)

if TYPE_CHECKING:
    from bounty_market_service.services.task_store import TaskStore


class Clock(Protocol):
    def now_ms(self) -> int: ...


class DeadlineEvaluator:
    """
    Materializes transitions that should already have happened.

    There is no background scheduler: a task moves from Open to Expired, or
    from Pending to Overdue, only when some call touches it. Callers run
    ``evaluate`` inside the store transaction of the call that touched it.
    """

    def __init__(self, store: TaskStore, clock: Clock) -> None:
        self._store = store
        self._clock = clock
        self._logger = get_logger(__name__)

    @staticmethod
    def due_transition(task: dict[str, Any], now_ms: int) -> str | None:
        """Return the state the task should be in at now_ms, or None if unchanged."""
        status = task["status"]

        if status == OPEN:
            valid_till = task["valid_till"]
            if (
                task["task_type"] == INVITE_ONLY
                and task["person_assigned"] is None
                and valid_till is not None
                and now_ms >= valid_till
            ):
                return EXPIRED
        elif status == PENDING and now_ms >= task["deadline"]:
            return OVERDUE

        return None

    def evaluate(self, task: dict[str, Any]) -> dict[str, Any]:
        """
        Apply any due transition to the task and persist it.

        Idempotent: a task with nothing due, including every terminal task,
        comes back unchanged. Expiry also drops the task from every
        invitee's index entry, inside the caller's transaction.
        """
        target = self.due_transition(task, self._clock.now_ms())
        if target is None:
            return task

        current = task["status"]
        check_transition(current, target)
        changed_rows = self._store.update_task(
            str(task["task_id"]),
            {"status": target},
            expected_status=current,
        )
        if changed_rows > 0:
            if target == EXPIRED:
                # Nobody can accept any more
                for account_id in task["invited_accounts"] or []:
                    self._store.invited_tasks.remove(account_id, str(task["task_id"]))
            task = {**task, "status": target}
            self._logger.info(
                "Task transitioned on touch",
                extra={"task_id": task["task_id"], "from_status": current, "to_status": target},
            )
        return task
