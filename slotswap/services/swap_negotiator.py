"""
Swap negotiation between two slot owners.

A swap request moves through ``PENDING -> ACCEPTED | REJECTED`` and never
leaves a terminal state. While a request is PENDING both of its slots are in
SWAP_PENDING, which is what keeps a second proposal, an edit or a delete
away from them: the slot status is the lock.

Every read-validate-write sequence below runs in a single storage
transaction, and slot/request writes are compare-and-set against the status
that was read. Two callers racing for the same slot therefore end with one
success and one ``ConflictError``, never with two pending requests or a
double exchange.
"""

from __future__ import annotations

from typing import Callable, List, Optional, Protocol

from pendulum import DateTime

from ..domain import transitions
from ..domain.exceptions import ForbiddenError, NotFoundError, ValidationError
from ..domain.models import (
    Party,
    Slot,
    SlotStatus,
    SwapRequest,
    SwapRequestView,
    SwapStatus,
    new_id,
    utc_now,
)
from .storage import Storage, Transaction


class UserDirectoryProtocol(Protocol):
    """Read access to user profiles for denormalized listings."""

    def find_user(self, user_id: str):
        """Return an object with ``id``, ``name`` and ``email`` or ``None``."""


class SwapNegotiator:
    """
    Proposes and resolves slot swaps.

    The optional user directory only affects how parties are displayed in
    listings; the protocol itself works on bare user ids.
    """

    def __init__(
        self,
        storage: Storage,
        directory: Optional[UserDirectoryProtocol] = None,
        clock: Callable[[], DateTime] = utc_now,
    ) -> None:
        self._storage = storage
        self._directory = directory
        self._clock = clock

    def propose_swap(
        self,
        requester_id: str,
        offered_slot_id: str,
        requested_slot_id: str,
    ) -> SwapRequest:
        """
        Offer ``offered_slot_id`` in exchange for ``requested_slot_id``.

        Returns:
            The new PENDING swap request

        Raises:
            ValidationError: Same slot on both sides, or a self-swap
            NotFoundError: Either slot does not exist
            ForbiddenError: The requester does not own the offered slot
            ConflictError: Either slot is not SWAPPABLE
        """
        if offered_slot_id == requested_slot_id:
            raise ValidationError("Cannot swap a slot with itself")

        with self._storage.transaction() as tx:
            offered = self._load_slot(tx, offered_slot_id, "Your slot")
            requested = self._load_slot(tx, requested_slot_id, "Requested slot")

            transitions.check_proposal(requester_id, offered, requested)

            now = self._clock()
            locked_offered, locked_requested = transitions.lock_for_swap(offered, requested, now)
            request = SwapRequest(
                id=new_id(),
                requester_id=requester_id,
                owner_id=requested.owner_id,
                offered_slot_id=offered.id,
                requested_slot_id=requested.id,
                status=SwapStatus.PENDING,
                created_at=now,
                updated_at=now,
            )

            tx.slots.update(locked_offered, expected_status=SlotStatus.SWAPPABLE)
            tx.slots.update(locked_requested, expected_status=SlotStatus.SWAPPABLE)
            tx.requests.add(request)

        return request

    def respond_to_swap(self, request_id: str, responder_id: str, accept: bool) -> SwapRequest:
        """
        Accept or reject a pending request addressed to ``responder_id``.

        Accepting exchanges the owners of both slots and marks them BUSY;
        rejecting puts both back on the market as SWAPPABLE.

        Raises:
            NotFoundError: Unknown request
            ForbiddenError: The responder is not the owner of the requested slot
            ConflictError: The request was already answered
        """
        with self._storage.transaction() as tx:
            request = tx.requests.get(request_id)
            if request is None:
                raise NotFoundError(f"Swap request {request_id} not found")

            transitions.check_response(request, responder_id)

            offered = self._load_slot(tx, request.offered_slot_id, "Offered slot")
            requested = self._load_slot(tx, request.requested_slot_id, "Requested slot")

            resolve = transitions.exchange_owners if accept else transitions.release_slots
            new_offered, new_requested, resolved = resolve(
                request, offered, requested, self._clock()
            )

            tx.requests.update(resolved, expected_status=SwapStatus.PENDING)
            tx.slots.update(new_offered, expected_status=SlotStatus.SWAP_PENDING)
            tx.slots.update(new_requested, expected_status=SlotStatus.SWAP_PENDING)

        return resolved

    def list_incoming(self, owner_id: str) -> List[SwapRequestView]:
        """Requests waiting on (or answered by) ``owner_id``, newest first."""
        with self._storage.transaction() as tx:
            return [self._view(tx, request) for request in tx.requests.list_by_owner(owner_id)]

    def list_outgoing(self, requester_id: str) -> List[SwapRequestView]:
        """Requests sent by ``requester_id``, newest first."""
        with self._storage.transaction() as tx:
            return [
                self._view(tx, request)
                for request in tx.requests.list_by_requester(requester_id)
            ]

    def get_request(self, request_id: str, caller_id: str) -> SwapRequestView:
        """Fetch one request; only its two parties may see it."""
        with self._storage.transaction() as tx:
            request = tx.requests.get(request_id)
            if request is None:
                raise NotFoundError(f"Swap request {request_id} not found")
            if not request.involves(caller_id):
                raise ForbiddenError(
                    f"Swap request {request_id} does not involve {caller_id}"
                )
            return self._view(tx, request)

    @staticmethod
    def _load_slot(tx: Transaction, slot_id: str, label: str) -> Slot:
        slot = tx.slots.get(slot_id)
        if slot is None:
            raise NotFoundError(f"{label} {slot_id} not found")
        return slot

    def _view(self, tx: Transaction, request: SwapRequest) -> SwapRequestView:
        offered, requested = (tx.slots.get(slot_id) for slot_id in request.slot_ids)
        return SwapRequestView(
            request=request,
            offered_slot=offered,
            requested_slot=requested,
            requester=self._party(request.requester_id),
            owner=self._party(request.owner_id),
        )

    def _party(self, user_id: str) -> Party:
        profile = self._directory.find_user(user_id) if self._directory is not None else None
        if profile is None:
            return Party(id=user_id, name=user_id)
        return Party(id=profile.id, name=profile.name, email=profile.email)
