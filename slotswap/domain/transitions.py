"""
Guard checks and state transitions for slots and swap requests.

Pure domain logic: every function here either returns new immutable values
or raises one of the domain errors. Nothing is read from or written to
storage, so the services can run all checks inside one transaction and write
only after every guard has passed.

Slot status doubles as the concurrency control mechanism of the negotiation
protocol. A slot in SWAP_PENDING is locked by exactly one PENDING request:
proposing requires both slots to be SWAPPABLE and moves them to
SWAP_PENDING, and only resolving that request releases them again.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Tuple

from pendulum import DateTime

from .exceptions import ConflictError, ForbiddenError, ValidationError
from .models import (
    Slot,
    SlotPatch,
    SlotStatus,
    SwapRequest,
    SwapStatus,
    TimeRange,
    as_datetime,
)


def require_title(title: str) -> str:
    """Return the stripped title, rejecting empty ones."""
    cleaned = (title or "").strip()
    if not cleaned:
        raise ValidationError("Title is required")
    return cleaned


def require_time_range(start, end) -> TimeRange:
    if start is None or end is None:
        raise ValidationError("Start and end time are required")
    return TimeRange(start=as_datetime(start), end=as_datetime(end))


def require_owner(slot: Slot, caller_id: str) -> None:
    if slot.owner_id != caller_id:
        raise ForbiddenError(f"Slot {slot.id} does not belong to {caller_id}")


def require_unlocked(slot: Slot, action: str) -> None:
    if slot.is_locked:
        raise ConflictError(f"Cannot {action} slot {slot.id} with a pending swap request")


def require_owner_settable(status: SlotStatus) -> SlotStatus:
    status = SlotStatus(status)
    if not status.owner_settable:
        raise ValidationError(
            f"Status {status.value} is reserved for swap negotiation; "
            f"use {SlotStatus.BUSY.value} or {SlotStatus.SWAPPABLE.value}"
        )
    return status


def apply_patch(slot: Slot, patch: SlotPatch, now: DateTime) -> Slot:
    """
    Apply an owner's patch to an unlocked slot.

    The time range is re-validated whenever either bound changes.
    """
    changes = {}

    if patch.title is not None:
        changes["title"] = require_title(patch.title)

    if patch.changes_time():
        time_range = require_time_range(
            patch.start if patch.start is not None else slot.start,
            patch.end if patch.end is not None else slot.end,
        )
        changes["start"] = time_range.start
        changes["end"] = time_range.end

    if patch.status is not None:
        status = require_owner_settable(patch.status)
        if status is not slot.status:
            changes["status"] = status

    if not changes:
        return slot

    return replace(slot, updated_at=now, **changes)


# Negotiation


def check_proposal(requester_id: str, offered: Slot, requested: Slot) -> None:
    """
    Validate a swap proposal against the current state of both slots.

    Order matters: ownership of the offered slot is checked before the
    self-swap rule, and status last, so a caller only learns about slot
    state once they are entitled to propose.
    """
    if offered.owner_id != requester_id:
        raise ForbiddenError("You do not own the slot you are offering")

    if requested.owner_id == requester_id:
        raise ValidationError("Cannot swap with your own slot")

    if offered.status is not SlotStatus.SWAPPABLE:
        raise ConflictError(
            f"Your slot must be marked as {SlotStatus.SWAPPABLE.value} to request a swap "
            f"(currently {offered.status.value})"
        )

    if requested.status is not SlotStatus.SWAPPABLE:
        raise ConflictError("The requested slot is no longer available for swapping")


def lock_for_swap(offered: Slot, requested: Slot, now: DateTime) -> Tuple[Slot, Slot]:
    return (
        replace(offered, status=SlotStatus.SWAP_PENDING, updated_at=now),
        replace(requested, status=SlotStatus.SWAP_PENDING, updated_at=now),
    )


def check_response(request: SwapRequest, responder_id: str) -> None:
    if request.owner_id != responder_id:
        raise ForbiddenError("You are not authorized to respond to this swap request")

    if request.status.is_terminal:
        raise ConflictError(
            f"This swap request has already been {request.status.value.lower()}"
        )


def exchange_owners(
    request: SwapRequest,
    offered: Slot,
    requested: Slot,
    now: DateTime,
) -> Tuple[Slot, Slot, SwapRequest]:
    """Accept: both slots change hands and return to BUSY."""
    return (
        replace(offered, owner_id=request.owner_id, status=SlotStatus.BUSY, updated_at=now),
        replace(requested, owner_id=request.requester_id, status=SlotStatus.BUSY, updated_at=now),
        replace(request, status=SwapStatus.ACCEPTED, updated_at=now),
    )


def release_slots(
    request: SwapRequest,
    offered: Slot,
    requested: Slot,
    now: DateTime,
) -> Tuple[Slot, Slot, SwapRequest]:
    """Reject: both slots become SWAPPABLE again with owners unchanged."""
    return (
        replace(offered, status=SlotStatus.SWAPPABLE, updated_at=now),
        replace(requested, status=SlotStatus.SWAPPABLE, updated_at=now),
        replace(request, status=SwapStatus.REJECTED, updated_at=now),
    )
