"""Rebuild the derived indices from the task store and compare them with the live ones."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from bounty_market_service.services.task_states import live_invitees

if TYPE_CHECKING:
    from collections.abc import Iterable


@dataclass
class DerivedIndices:
    """Company and invited-user indices as they follow from the task records alone."""

    company_tasks: dict[str, set[str]] = field(default_factory=dict)
    invited_tasks: dict[str, set[str]] = field(default_factory=dict)


@dataclass
class IndexDrift:
    """Differences between a derived index and the stored one."""

    missing: list[tuple[str, str]] = field(default_factory=list)
    dangling: list[tuple[str, str]] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return not self.missing and not self.dangling

    def to_dict(self) -> dict[str, Any]:
        return {
            "consistent": self.consistent,
            "missing": [list(pair) for pair in self.missing],
            "dangling": [list(pair) for pair in self.dangling],
        }


def rebuild_indices(tasks: Iterable[dict[str, Any]]) -> DerivedIndices:
    """Derive both reverse indices from primary task records."""
    derived = DerivedIndices()
    for task in tasks:
        task_id = task["task_id"]
        derived.company_tasks.setdefault(task["company_id"], set()).add(task_id)
        for account_id in live_invitees(task):
            derived.invited_tasks.setdefault(account_id, set()).add(task_id)
    return derived


def diff_index(expected: dict[str, set[str]], actual: dict[str, set[str]]) -> IndexDrift:
    """
    Compare a derived index with a stored one.

    ``missing`` holds pairs the store should have but does not; ``dangling``
    holds stored pairs no task record accounts for.
    """
    drift = IndexDrift()
    for key in sorted(expected.keys() | actual.keys()):
        wanted = expected.get(key, set())
        present = actual.get(key, set())
        drift.missing.extend((key, member) for member in sorted(wanted - present))
        drift.dangling.extend((key, member) for member in sorted(present - wanted))
    return drift
