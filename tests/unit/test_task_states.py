"""Unit tests for the task state machine."""

from __future__ import annotations

import pytest

from bounty_market_service.services.task_states import (
    ALL_STATUSES,
    STATUS_CODES,
    STATUS_NAMES,
    TERMINAL_STATUSES,
    TRANSITIONS,
    IllegalTransitionError,
    check_transition,
    initial_status,
    live_invitees,
)
from tests.helpers import make_task_row


@pytest.mark.unit
def test_initial_status_by_task_type() -> None:
    assert initial_status("invite_only") == "open"
    assert initial_status("for_everyone") == "pending"


@pytest.mark.unit
@pytest.mark.parametrize(
    ("current", "target"),
    [
        ("open", "pending"),
        ("open", "expired"),
        ("pending", "completed"),
        ("pending", "overdue"),
        ("completed", "payed"),
    ],
)
def test_legal_transitions(current: str, target: str) -> None:
    check_transition(current, target)


@pytest.mark.unit
@pytest.mark.parametrize(
    ("current", "target"),
    [
        ("open", "completed"),
        ("pending", "open"),
        ("completed", "pending"),
        ("expired", "open"),
        ("overdue", "pending"),
        ("payed", "completed"),
    ],
)
def test_illegal_transitions(current: str, target: str) -> None:
    with pytest.raises(IllegalTransitionError):
        check_transition(current, target)


@pytest.mark.unit
def test_terminal_states_have_no_exits() -> None:
    for status in TERMINAL_STATUSES:
        assert TRANSITIONS[status] == frozenset()


@pytest.mark.unit
def test_status_codes_round_trip() -> None:
    assert set(STATUS_CODES) == set(ALL_STATUSES)
    assert {STATUS_NAMES[code] for code in STATUS_CODES.values()} == set(ALL_STATUSES)


@pytest.mark.unit
@pytest.mark.parametrize(
    ("overrides", "expected"),
    [
        ({}, ["bob", "carol"]),
        ({"status": "pending", "person_assigned": "carol"}, ["carol"]),
        ({"status": "payed", "person_assigned": "carol"}, ["carol"]),
        ({"status": "expired"}, []),
        ({"task_type": "for_everyone", "invited_accounts": None, "status": "pending"}, []),
    ],
    ids=["open", "accepted", "payed", "expired", "for-everyone"],
)
def test_live_invitees(overrides: dict[str, object], expected: list[str]) -> None:
    task = make_task_row(**{"invited_accounts": ["bob", "carol"], **overrides})
    assert live_invitees(task) == expected
