"""Unit tests for IndexedSetStore."""

from __future__ import annotations

import sqlite3
from threading import RLock

import pytest

from bounty_market_service.services.indexed_set import (
    DuplicateMemberError,
    IndexedSetStore,
    KeyNotFoundError,
)


@pytest.fixture
def index() -> IndexedSetStore:
    db = sqlite3.connect(":memory:", isolation_level=None)
    db.row_factory = sqlite3.Row
    return IndexedSetStore(db, RLock(), table="company_tasks", key_column="company_id", member_column="task_id")


@pytest.mark.unit
def test_add_and_enumerate(index: IndexedSetStore) -> None:
    index.add("acme", "acme.t1")
    index.add("acme", "acme.t2")
    index.add("globex", "globex.t1")

    assert index.members("acme") == ["acme.t1", "acme.t2"]
    assert index.count("acme") == 2
    assert index.keys() == ["acme", "globex"]
    assert index.as_mapping() == {"acme": {"acme.t1", "acme.t2"}, "globex": {"globex.t1"}}


@pytest.mark.unit
def test_add_duplicate_member_raises(index: IndexedSetStore) -> None:
    index.add("acme", "acme.t1")

    with pytest.raises(DuplicateMemberError) as exc_info:
        index.add("acme", "acme.t1")

    assert exc_info.value.key == "acme"
    assert exc_info.value.member == "acme.t1"
    assert index.count("acme") == 1


@pytest.mark.unit
def test_same_member_under_different_keys(index: IndexedSetStore) -> None:
    index.add("bob", "acme.t1")
    index.add("carol", "acme.t1")

    assert index.contains("bob", "acme.t1")
    assert index.contains("carol", "acme.t1")


@pytest.mark.unit
def test_removing_last_member_drops_key(index: IndexedSetStore) -> None:
    index.add("acme", "acme.t1")
    index.add("acme", "acme.t2")

    assert index.remove("acme", "acme.t1") is True
    assert index.has_key("acme")

    assert index.remove("acme", "acme.t2") is True
    assert not index.has_key("acme")
    assert index.keys() == []
    assert index.as_mapping() == {}


@pytest.mark.unit
def test_remove_from_unknown_key_raises(index: IndexedSetStore) -> None:
    with pytest.raises(KeyNotFoundError) as exc_info:
        index.remove("nobody", "acme.t1")
    assert exc_info.value.key == "nobody"


@pytest.mark.unit
def test_remove_missing_member_of_known_key(index: IndexedSetStore) -> None:
    index.add("acme", "acme.t1")

    assert index.remove("acme", "acme.t9") is False
    assert index.members("acme") == ["acme.t1"]


@pytest.mark.unit
def test_members_pagination(index: IndexedSetStore) -> None:
    for n in range(5):
        index.add("acme", f"acme.t{n}")

    assert index.members("acme", offset=0, limit=2) == ["acme.t0", "acme.t1"]
    assert index.members("acme", offset=4, limit=2) == ["acme.t4"]
    assert index.members("acme", offset=5, limit=2) == []


@pytest.mark.unit
def test_value_columns_store_nested_records() -> None:
    db = sqlite3.connect(":memory:", isolation_level=None)
    db.row_factory = sqlite3.Row
    ledger = IndexedSetStore(
        db,
        RLock(),
        table="notes",
        key_column="task_id",
        member_column="account_id",
        value_columns=("body",),
    )

    ledger.add("acme.t1", "dave", {"body": "first"})

    assert ledger.get("acme.t1", "dave") == {"body": "first"}
    assert ledger.get("acme.t1", "erin") is None
    assert ledger.entries("acme.t1") == [("dave", {"body": "first"})]
    assert ledger.remove_key("acme.t1") == 1
    assert not ledger.has_key("acme.t1")
