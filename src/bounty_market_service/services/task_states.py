"""Task states, task types, and the legal transitions between states."""

from __future__ import annotations

from typing import Any

OPEN = "open"
PENDING = "pending"
COMPLETED = "completed"
EXPIRED = "expired"
OVERDUE = "overdue"
PAYED = "payed"

ALL_STATUSES: tuple[str, ...] = (OPEN, PENDING, COMPLETED, EXPIRED, OVERDUE, PAYED)

# Stored as fixed-width integers so a state change never changes retained bytes
STATUS_CODES: dict[str, int] = {status: code for code, status in enumerate(ALL_STATUSES)}
STATUS_NAMES: dict[int, str] = {code: status for status, code in STATUS_CODES.items()}

# No automatic transition ever leaves these
TERMINAL_STATUSES = frozenset({EXPIRED, OVERDUE, PAYED})

# States from which the owning company may reclaim the escrow
REFUNDABLE_STATUSES = frozenset({EXPIRED, OVERDUE})

INVITE_ONLY = "invite_only"
FOR_EVERYONE = "for_everyone"

TASK_TYPES = frozenset({INVITE_ONLY, FOR_EVERYONE})

TRANSITIONS: dict[str, frozenset[str]] = {
    OPEN: frozenset({PENDING, EXPIRED}),
    PENDING: frozenset({COMPLETED, OVERDUE}),
    COMPLETED: frozenset({PAYED}),
    EXPIRED: frozenset(),
    OVERDUE: frozenset(),
    PAYED: frozenset(),
}


class IllegalTransitionError(Exception):
    """Raised when code attempts a state change outside the transition table."""


def initial_status(task_type: str) -> str:
    """Open tasks wait for an invitee; tasks for everyone take submissions straight away."""
    return OPEN if task_type == INVITE_ONLY else PENDING


def check_transition(current: str, target: str) -> None:
    if target not in TRANSITIONS[current]:
        msg = f"Illegal task transition {current} -> {target}"
        raise IllegalTransitionError(msg)


def live_invitees(task: dict[str, Any]) -> list[str]:
    """
    Accounts whose invited-user index entry should exist for the task.

    Every invitee while the task is Open. Once someone accepts, only the
    assignee keeps the entry. An expired task has no live invitations.
    """
    if task["task_type"] != INVITE_ONLY:
        return []
    if task["status"] == OPEN:
        return list(task["invited_accounts"] or [])
    assignee = task["person_assigned"]
    return [assignee] if assignee is not None else []
