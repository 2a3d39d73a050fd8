"""
Persistence protocols used by the slot store and the swap negotiator.

The services never talk to a database directly. They open one transaction
per operation through a ``Storage`` and work against the repositories it
exposes; any adapter that satisfies these protocols (in-memory, SQL) can be
plugged in.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator, List, Optional, Protocol

from ..domain.models import Slot, SlotStatus, SwapRequest, SwapStatus


class SlotRepository(Protocol):
    """Slot records visible inside one transaction."""

    def get(self, slot_id: str) -> Optional[Slot]:
        """Return the slot or ``None``."""

    def add(self, slot: Slot) -> None:
        """Insert a new slot."""

    def update(self, slot: Slot, expected_status: SlotStatus) -> None:
        """
        Overwrite a stored slot.

        The write only happens if the stored status still equals
        ``expected_status``; otherwise ``ConflictError`` is raised.
        """

    def delete(self, slot_id: str, expected_status: SlotStatus) -> None:
        """Remove a slot, with the same status check as ``update``."""

    def list_by_owner(self, owner_id: str) -> List[Slot]:
        """Slots of one owner, ascending by start."""

    def list_by_status(
        self,
        status: SlotStatus,
        excluding_owner_id: Optional[str] = None,
    ) -> List[Slot]:
        """Slots in ``status``, optionally skipping one owner, ascending by start."""


class SwapRequestRepository(Protocol):
    """Swap request records visible inside one transaction."""

    def get(self, request_id: str) -> Optional[SwapRequest]:
        """Return the request or ``None``."""

    def add(self, request: SwapRequest) -> None:
        """Insert a new request."""

    def update(self, request: SwapRequest, expected_status: SwapStatus) -> None:
        """Overwrite a stored request if its status is still ``expected_status``."""

    def list_by_owner(self, owner_id: str) -> List[SwapRequest]:
        """Requests addressed to ``owner_id``, newest first."""

    def list_by_requester(self, requester_id: str) -> List[SwapRequest]:
        """Requests sent by ``requester_id``, newest first."""


class Transaction(Protocol):
    """An open unit of work over slots and swap requests."""

    slots: SlotRepository
    requests: SwapRequestRepository

    def commit(self) -> None:
        """Make every change of this transaction visible atomically."""

    def abort(self) -> None:
        """Discard every change of this transaction."""


class Storage(Protocol):
    """Shared persistent store of slots and swap requests."""

    def transaction(self):
        """Context manager yielding a ``Transaction``."""


class TransactionalStorage(ABC):
    """
    Base class for storage adapters.

    Subclasses implement ``begin()``; ``transaction()`` commits when the block
    completes and aborts when it raises, re-raising the original error.
    """

    @abstractmethod
    def begin(self) -> Transaction:
        """Open a transaction; the caller must commit or abort it."""

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        tx = self.begin()
        try:
            yield tx
        except BaseException:
            tx.abort()
            raise
        tx.commit()
