"""Unit tests for SqliteStorageMeter."""

from __future__ import annotations

import pytest

from bounty_market_service.services.storage_meter import INTEGER_WIDTH_BYTES, SqliteStorageMeter
from bounty_market_service.services.task_store import TaskStore
from tests.helpers import make_submission, make_task_row


@pytest.fixture
def store(tmp_path):
    task_store = TaskStore(db_path=str(tmp_path / "market.db"))
    yield task_store
    task_store.close()


@pytest.mark.unit
def test_empty_store_uses_nothing(store: TaskStore) -> None:
    meter = SqliteStorageMeter(store.connection, store.lock, record_overhead_bytes=40)
    assert meter.bytes_used() == 0


@pytest.mark.unit
def test_index_row_costs_overhead_plus_text(store: TaskStore) -> None:
    meter = SqliteStorageMeter(store.connection, store.lock, record_overhead_bytes=40)

    store.company_tasks.add("acme", "acme.t1")

    assert meter.bytes_used() == 40 + len("acme") + len("acme.t1")


@pytest.mark.unit
def test_text_is_measured_in_utf8_bytes(store: TaskStore) -> None:
    meter = SqliteStorageMeter(store.connection, store.lock, record_overhead_bytes=0)

    store.invited_tasks.add("bob", "acme.über")

    assert meter.bytes_used() == len("bob") + len("acme.über".encode())


@pytest.mark.unit
def test_state_change_keeps_size(store: TaskStore) -> None:
    meter = SqliteStorageMeter(store.connection, store.lock, record_overhead_bytes=40)
    store.insert_task(make_task_row())
    before = meter.bytes_used()

    store.update_task("acme.t1", {"status": "expired"})

    assert meter.bytes_used() == before


@pytest.mark.unit
def test_assignment_grows_by_account_length(store: TaskStore) -> None:
    meter = SqliteStorageMeter(store.connection, store.lock, record_overhead_bytes=40)
    store.insert_task(make_task_row())
    before = meter.bytes_used()

    store.update_task("acme.t1", {"person_assigned": "bob", "status": "pending"})

    assert meter.bytes_used() - before == len("bob")


@pytest.mark.unit
def test_null_integers_are_free(store: TaskStore) -> None:
    meter = SqliteStorageMeter(store.connection, store.lock, record_overhead_bytes=0)
    store.insert_task(make_task_row("acme.a", valid_till=1_000))
    with_valid_till = meter.bytes_used()
    store.delete_task("acme.a")
    store.insert_task(make_task_row("acme.a", valid_till=None))

    assert with_valid_till - meter.bytes_used() == INTEGER_WIDTH_BYTES


@pytest.mark.unit
def test_uncommitted_writes_are_visible_inside_transaction(store: TaskStore) -> None:
    meter = SqliteStorageMeter(store.connection, store.lock, record_overhead_bytes=40)

    with pytest.raises(RuntimeError), store.transaction():
        store.submissions.insert("acme.t1", "dave", make_submission("dave"))
        assert meter.bytes_used() > 0
        raise RuntimeError("abort")

    assert meter.bytes_used() == 0
