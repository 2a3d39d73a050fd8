"""
Tests for the SQLAlchemy storage adapter.
"""

import threading

import pendulum
import pytest

from slotswap.adapters.sql_store import SqlStorage
from slotswap.domain.exceptions import ConflictError
from slotswap.domain.models import Slot, SlotStatus, SwapRequest, SwapStatus


def _slot(slot_id="s1", owner_id="alice", status=SlotStatus.SWAPPABLE) -> Slot:
    return Slot(
        id=slot_id,
        owner_id=owner_id,
        title="Team sync",
        start=pendulum.parse("2024-11-25 09:00", tz="Europe/Berlin"),
        end=pendulum.parse("2024-11-25 10:00", tz="Europe/Berlin"),
        status=status,
    )


@pytest.fixture
def sql_storage():
    storage = SqlStorage.from_url("sqlite://")
    storage.create_schema()
    yield storage
    storage.dispose()


def test_times_round_trip_as_utc(sql_storage):
    """Stored times compare equal and come back in UTC."""
    with sql_storage.transaction() as tx:
        tx.slots.add(_slot())

    with sql_storage.transaction() as tx:
        loaded = tx.slots.get("s1")

    assert loaded.start == pendulum.parse("2024-11-25 09:00", tz="Europe/Berlin")
    assert loaded.start.timezone_name == "UTC"
    assert loaded.start.hour == 8
    assert loaded.status is SlotStatus.SWAPPABLE


def test_abort_discards_changes(sql_storage):
    with pytest.raises(RuntimeError):
        with sql_storage.transaction() as tx:
            tx.slots.add(_slot())
            raise RuntimeError("boom")

    with sql_storage.transaction() as tx:
        assert tx.slots.get("s1") is None


def test_update_with_stale_status_conflicts(sql_storage):
    """A status write based on an outdated read is refused."""
    with sql_storage.transaction() as tx:
        tx.slots.add(_slot(status=SlotStatus.BUSY))

    with pytest.raises(ConflictError, match="modified concurrently"):
        with sql_storage.transaction() as tx:
            tx.slots.update(
                _slot(status=SlotStatus.SWAP_PENDING),
                expected_status=SlotStatus.SWAPPABLE,
            )

    with sql_storage.transaction() as tx:
        assert tx.slots.get("s1").status is SlotStatus.BUSY


def test_delete_missing_slot_conflicts(sql_storage):
    with pytest.raises(ConflictError):
        with sql_storage.transaction() as tx:
            tx.slots.delete("missing", expected_status=SlotStatus.BUSY)


def test_database_errors_surface_as_conflicts(sql_storage):
    """Driver errors such as a duplicate key become ConflictError."""
    with sql_storage.transaction() as tx:
        tx.slots.add(_slot())

    with pytest.raises(ConflictError):
        with sql_storage.transaction() as tx:
            tx.slots.add(_slot())


def test_request_update_requires_pending(sql_storage):
    created = pendulum.datetime(2024, 11, 20, 8, 0, tz="UTC")
    request = SwapRequest(
        id="r1",
        requester_id="bob",
        owner_id="alice",
        offered_slot_id="s2",
        requested_slot_id="s1",
        status=SwapStatus.ACCEPTED,
        created_at=created,
    )
    with sql_storage.transaction() as tx:
        tx.requests.add(request)

    with pytest.raises(ConflictError):
        with sql_storage.transaction() as tx:
            tx.requests.update(request, expected_status=SwapStatus.PENDING)

    with sql_storage.transaction() as tx:
        assert tx.requests.get("r1").created_at == created
        assert tx.requests.list_by_owner("alice")[0].status is SwapStatus.ACCEPTED


def test_file_database_persists_between_storages(tmp_path):
    url = f"sqlite:///{tmp_path / 'slots.db'}"
    first = SqlStorage.from_url(url)
    first.create_schema()
    with first.transaction() as tx:
        tx.slots.add(_slot())
    first.dispose()

    second = SqlStorage.from_url(url)
    with second.transaction() as tx:
        assert [slot.id for slot in tx.slots.list_by_owner("alice")] == ["s1"]
    second.dispose()


def test_in_memory_database_runs_transactions_one_at_a_time(sql_storage):
    """A second transaction on the shared connection waits for the first to finish."""
    seen = []

    def second_writer():
        with sql_storage.transaction() as tx:
            seen.append(tx.slots.get("s1"))
            tx.slots.add(_slot("s2", owner_id="bob"))

    tx = sql_storage.begin()
    tx.slots.add(_slot())
    worker = threading.Thread(target=second_writer, daemon=True)
    worker.start()
    worker.join(timeout=0.2)
    assert worker.is_alive()

    tx.slots.update(_slot(status=SlotStatus.SWAP_PENDING), expected_status=SlotStatus.SWAPPABLE)
    tx.commit()
    worker.join(timeout=5)

    assert not worker.is_alive()
    assert seen[0].status is SlotStatus.SWAP_PENDING
    with sql_storage.transaction() as check:
        assert check.slots.get("s1").status is SlotStatus.SWAP_PENDING
        assert check.slots.get("s2").owner_id == "bob"


def test_aborted_transaction_releases_in_memory_database(sql_storage):
    tx = sql_storage.begin()
    tx.slots.add(_slot())
    tx.abort()

    with sql_storage.transaction() as check:
        assert check.slots.get("s1") is None
