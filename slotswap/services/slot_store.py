"""
Slot store: owner-facing operations on calendar slots.

Each public method runs inside exactly one storage transaction, and all
guards are evaluated before anything is written, so a failing call leaves the
store untouched.
"""

from __future__ import annotations

from typing import Callable, List, Optional

from pendulum import DateTime

from ..domain import transitions
from ..domain.exceptions import NotFoundError, ValidationError
from ..domain.models import Slot, SlotPatch, SlotStatus, new_id, utc_now
from .storage import Storage, Transaction


class SlotStore:
    """
    Creates, lists, edits and deletes slots on behalf of their owners.

    Status changes into or out of SWAP_PENDING, and ownership changes, are
    not available here; they belong to the swap negotiator.
    """

    def __init__(
        self,
        storage: Storage,
        clock: Callable[[], DateTime] = utc_now,
    ) -> None:
        self._storage = storage
        self._clock = clock

    def create_slot(
        self,
        owner_id: str,
        title: str,
        start,
        end,
        initial_status: SlotStatus = SlotStatus.BUSY,
    ) -> Slot:
        """
        Create a slot for ``owner_id``.

        Raises:
            ValidationError: If the title is empty, ``end <= start`` or the
                initial status is SWAP_PENDING
        """
        cleaned_title = transitions.require_title(title)
        time_range = transitions.require_time_range(start, end)
        status = transitions.require_owner_settable(initial_status)

        now = self._clock()
        slot = Slot(
            id=new_id(),
            owner_id=owner_id,
            title=cleaned_title,
            start=time_range.start,
            end=time_range.end,
            status=status,
            created_at=now,
            updated_at=now,
        )

        with self._storage.transaction() as tx:
            tx.slots.add(slot)

        return slot

    def list_slots(self, owner_id: str) -> List[Slot]:
        with self._storage.transaction() as tx:
            return tx.slots.list_by_owner(owner_id)

    def get_slot(self, slot_id: str, caller_id: Optional[str] = None) -> Slot:
        """
        Fetch one slot.

        When ``caller_id`` is given, only the owner may read it.
        """
        with self._storage.transaction() as tx:
            slot = self._load(tx, slot_id)

        if caller_id is not None:
            transitions.require_owner(slot, caller_id)
        return slot

    def update_slot(self, slot_id: str, caller_id: str, patch: SlotPatch) -> Slot:
        with self._storage.transaction() as tx:
            slot = self._load_for_change(tx, slot_id, caller_id, "update")

            updated = transitions.apply_patch(slot, patch, self._clock())
            if updated is not slot:
                tx.slots.update(updated, expected_status=slot.status)
            return updated

    def set_status(self, slot_id: str, caller_id: str, new_status: SlotStatus) -> Slot:
        """
        Toggle a slot between BUSY and SWAPPABLE.

        Raises:
            ValidationError: If ``new_status`` is SWAP_PENDING
        """
        try:
            new_status = SlotStatus(new_status)
        except ValueError as exc:
            raise ValidationError(f"Unknown slot status: {new_status!r}") from exc

        return self.update_slot(slot_id, caller_id, SlotPatch(status=new_status))

    def delete_slot(self, slot_id: str, caller_id: str) -> None:
        with self._storage.transaction() as tx:
            slot = self._load_for_change(tx, slot_id, caller_id, "delete")
            tx.slots.delete(slot.id, expected_status=slot.status)

    def list_swappable(self, excluding_owner_id: str) -> List[Slot]:
        """Slots other users have put on the market, ascending by start."""
        with self._storage.transaction() as tx:
            return tx.slots.list_by_status(
                SlotStatus.SWAPPABLE,
                excluding_owner_id=excluding_owner_id,
            )

    @staticmethod
    def _load(tx: Transaction, slot_id: str) -> Slot:
        slot = tx.slots.get(slot_id)
        if slot is None:
            raise NotFoundError(f"Slot {slot_id} not found")
        return slot

    def _load_for_change(
        self,
        tx: Transaction,
        slot_id: str,
        caller_id: str,
        action: str,
    ) -> Slot:
        slot = self._load(tx, slot_id)
        transitions.require_owner(slot, caller_id)
        transitions.require_unlocked(slot, action)
        return slot
