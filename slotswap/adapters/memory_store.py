"""
In-memory storage for tests and embedding without a database.
"""

from __future__ import annotations

import threading
from typing import Dict, List, Optional

from ..domain.exceptions import ConflictError
from ..domain.models import Slot, SlotStatus, SwapRequest, SwapStatus
from ..services.storage import TransactionalStorage


class _SlotTable:
    def __init__(self, rows: Dict[str, Slot]):
        self.rows = rows

    def get(self, slot_id: str) -> Optional[Slot]:
        return self.rows.get(slot_id)

    def add(self, slot: Slot) -> None:
        if slot.id in self.rows:
            raise ConflictError(f"Slot {slot.id} already exists")
        self.rows[slot.id] = slot

    def update(self, slot: Slot, expected_status: SlotStatus) -> None:
        self._check(slot.id, expected_status)
        self.rows[slot.id] = slot

    def delete(self, slot_id: str, expected_status: SlotStatus) -> None:
        self._check(slot_id, expected_status)
        del self.rows[slot_id]

    def list_by_owner(self, owner_id: str) -> List[Slot]:
        return self._sorted(slot for slot in self.rows.values() if slot.owner_id == owner_id)

    def list_by_status(
        self,
        status: SlotStatus,
        excluding_owner_id: Optional[str] = None,
    ) -> List[Slot]:
        return self._sorted(
            slot for slot in self.rows.values()
            if slot.status is status and slot.owner_id != excluding_owner_id
        )

    def _check(self, slot_id: str, expected_status: SlotStatus) -> None:
        current = self.rows.get(slot_id)
        if current is None or current.status is not expected_status:
            raise ConflictError(f"Slot {slot_id} was modified concurrently")

    @staticmethod
    def _sorted(slots) -> List[Slot]:
        return sorted(slots, key=lambda slot: slot.start)


class _RequestTable:
    def __init__(self, rows: Dict[str, SwapRequest]):
        self.rows = rows

    def get(self, request_id: str) -> Optional[SwapRequest]:
        return self.rows.get(request_id)

    def add(self, request: SwapRequest) -> None:
        if request.id in self.rows:
            raise ConflictError(f"Swap request {request.id} already exists")
        self.rows[request.id] = request

    def update(self, request: SwapRequest, expected_status: SwapStatus) -> None:
        current = self.rows.get(request.id)
        if current is None or current.status is not expected_status:
            raise ConflictError(f"Swap request {request.id} was modified concurrently")
        self.rows[request.id] = request

    def list_by_owner(self, owner_id: str) -> List[SwapRequest]:
        return self._newest_first(r for r in self.rows.values() if r.owner_id == owner_id)

    def list_by_requester(self, requester_id: str) -> List[SwapRequest]:
        return self._newest_first(
            r for r in self.rows.values() if r.requester_id == requester_id
        )

    @staticmethod
    def _newest_first(requests) -> List[SwapRequest]:
        return sorted(requests, key=lambda r: r.created_at, reverse=True)


class InMemoryTransaction:
    """
    Works on private copies of the tables.

    ``commit`` publishes the copies in one assignment; ``abort`` drops them.
    Either way the storage lock taken by ``begin`` is released.
    """

    def __init__(self, storage: "InMemoryStorage"):
        self._storage = storage
        self._open = True
        self.slots = _SlotTable(dict(storage._slots))
        self.requests = _RequestTable(dict(storage._requests))

    def commit(self) -> None:
        self._finish(publish=True)

    def abort(self) -> None:
        self._finish(publish=False)

    def _finish(self, publish: bool) -> None:
        if not self._open:
            raise RuntimeError("Transaction is already closed")
        try:
            if publish:
                self._storage._slots = self.slots.rows
                self._storage._requests = self.requests.rows
        finally:
            self._open = False
            self._storage._lock.release()


class InMemoryStorage(TransactionalStorage):
    """
    Process-local storage with serializable transactions.

    A single lock is held from ``begin`` until commit or abort, so
    transactions run one at a time and never observe each other's partial
    writes.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._slots: Dict[str, Slot] = {}
        self._requests: Dict[str, SwapRequest] = {}

    def begin(self) -> InMemoryTransaction:
        self._lock.acquire()
        return InMemoryTransaction(self)
