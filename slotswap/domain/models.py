"""
Domain models for slots, swap requests and their listing views.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

import pendulum
from pendulum import DateTime

from .exceptions import ValidationError


class SlotStatus(str, Enum):
    """Lifecycle status of a slot."""
    BUSY = "BUSY"
    SWAPPABLE = "SWAPPABLE"
    SWAP_PENDING = "SWAP_PENDING"

    @property
    def owner_settable(self) -> bool:
        """Whether an owner may put a slot into this status directly."""
        return self is not SlotStatus.SWAP_PENDING


class SwapStatus(str, Enum):
    """Lifecycle status of a swap request."""
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"

    @property
    def is_terminal(self) -> bool:
        return self is not SwapStatus.PENDING


def new_id() -> str:
    """Generate a fresh record identifier."""
    return uuid.uuid4().hex


def utc_now() -> DateTime:
    return pendulum.now("UTC")


def as_datetime(value) -> DateTime:
    """
    Coerce a datetime-like value to a pendulum DateTime.

    Naive values are interpreted as UTC.
    """
    if isinstance(value, DateTime) and value.tzinfo is not None:
        return value
    return pendulum.instance(value, tz=pendulum.UTC)


@dataclass(frozen=True)
class TimeRange:
    """
    Represents an immutable time range with start and end datetime.

    Invariant: start must be before end.
    """
    start: DateTime
    end: DateTime

    def __post_init__(self):
        if self.start >= self.end:
            raise ValidationError(
                f"End time {self.end} must be after start time {self.start}"
            )

    def format_display(self, timezone: str = "UTC") -> str:
        start = self.start.in_timezone(timezone)
        end = self.end.in_timezone(timezone)
        if start.date() == end.date():
            return f"{start.format('DD.MM.YYYY HH:mm')} - {end.format('HH:mm')}"
        return f"{start.format('DD.MM.YYYY HH:mm')} - {end.format('DD.MM.YYYY HH:mm')}"


@dataclass(frozen=True)
class Slot:
    """
    A bounded time interval owned by exactly one user.

    Slots are immutable values; every status or ownership change produces a
    new instance which the storage layer persists.
    """
    id: str
    owner_id: str
    title: str
    start: DateTime
    end: DateTime
    status: SlotStatus = SlotStatus.BUSY
    created_at: Optional[DateTime] = None
    updated_at: Optional[DateTime] = None

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(start=self.start, end=self.end)

    @property
    def is_locked(self) -> bool:
        """A SWAP_PENDING slot is held by an open swap request."""
        return self.status is SlotStatus.SWAP_PENDING


@dataclass(frozen=True)
class SlotPatch:
    """Partial update of a slot; ``None`` fields are left untouched."""
    title: Optional[str] = None
    start: Optional[DateTime] = None
    end: Optional[DateTime] = None
    status: Optional[SlotStatus] = None

    def is_empty(self) -> bool:
        return (
            self.title is None
            and self.start is None
            and self.end is None
            and self.status is None
        )

    def changes_time(self) -> bool:
        return self.start is not None or self.end is not None


@dataclass(frozen=True)
class SwapRequest:
    """
    A proposed bilateral exchange of two slots.

    ``offered_slot_id`` belongs to the requester, ``requested_slot_id`` to the
    owner, who is the only party allowed to respond.
    """
    id: str
    requester_id: str
    owner_id: str
    offered_slot_id: str
    requested_slot_id: str
    status: SwapStatus
    created_at: DateTime
    updated_at: Optional[DateTime] = None

    @property
    def slot_ids(self) -> Tuple[str, str]:
        return (self.offered_slot_id, self.requested_slot_id)

    def involves(self, user_id: str) -> bool:
        return user_id in (self.requester_id, self.owner_id)


@dataclass(frozen=True)
class Party:
    """Display identity of one side of a swap."""
    id: str
    name: str
    email: Optional[str] = None


@dataclass(frozen=True)
class SwapRequestView:
    """
    A swap request denormalized for listing.

    Slot snapshots reflect the slots' current state and are ``None`` when a
    slot was deleted after the request was resolved.
    """
    request: SwapRequest
    offered_slot: Optional[Slot]
    requested_slot: Optional[Slot]
    requester: Party
    owner: Party
