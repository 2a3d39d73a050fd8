"""
Tests for domain models and transition rules.
"""

import pendulum
import pytest

from slotswap.domain import transitions
from slotswap.domain.exceptions import ConflictError, ForbiddenError, ValidationError
from slotswap.domain.models import (
    Slot,
    SlotPatch,
    SlotStatus,
    SwapRequest,
    SwapStatus,
    TimeRange,
)


def _at(text: str):
    return pendulum.parse(text, tz="Europe/Berlin")


def _slot(slot_id="s1", owner_id="alice", status=SlotStatus.SWAPPABLE, **kwargs) -> Slot:
    return Slot(
        id=slot_id,
        owner_id=owner_id,
        title=kwargs.pop("title", "Team sync"),
        start=kwargs.pop("start", _at("2024-11-25 09:00")),
        end=kwargs.pop("end", _at("2024-11-25 10:00")),
        status=status,
        **kwargs,
    )


def _request(status=SwapStatus.PENDING) -> SwapRequest:
    return SwapRequest(
        id="r1",
        requester_id="bob",
        owner_id="alice",
        offered_slot_id="s2",
        requested_slot_id="s1",
        status=status,
        created_at=_at("2024-11-20 08:00"),
    )


class TestTimeRange:
    """Tests for TimeRange model."""

    def test_create_valid_time_range(self):
        """Test creating a valid time range."""
        tr = TimeRange(start=_at("2024-11-25 09:00"), end=_at("2024-11-25 17:00"))

        assert tr.start < tr.end
        assert tr.format_display("UTC") == "25.11.2024 08:00 - 16:00"

    def test_invalid_time_range_raises_validation_error(self):
        """End before start is malformed input."""
        with pytest.raises(ValidationError, match="must be after start time"):
            TimeRange(start=_at("2024-11-25 17:00"), end=_at("2024-11-25 09:00"))

    def test_empty_time_range_raises_validation_error(self):
        """End equal to start is rejected as well."""
        with pytest.raises(ValidationError):
            TimeRange(start=_at("2024-11-25 09:00"), end=_at("2024-11-25 09:00"))

    def test_format_display_same_day(self):
        tr = TimeRange(start=_at("2024-11-25 09:00"), end=_at("2024-11-25 10:30"))

        assert tr.format_display("Europe/Berlin") == "25.11.2024 09:00 - 10:30"


class TestStatuses:
    """Tests for status enums."""

    def test_only_swap_pending_is_reserved(self):
        assert SlotStatus.BUSY.owner_settable
        assert SlotStatus.SWAPPABLE.owner_settable
        assert not SlotStatus.SWAP_PENDING.owner_settable

    def test_terminal_request_statuses(self):
        assert not SwapStatus.PENDING.is_terminal
        assert SwapStatus.ACCEPTED.is_terminal
        assert SwapStatus.REJECTED.is_terminal

    def test_statuses_parse_from_strings(self):
        """Stored values map back to the enum members."""
        assert SlotStatus("SWAP_PENDING") is SlotStatus.SWAP_PENDING
        assert SwapStatus("REJECTED") is SwapStatus.REJECTED


class TestApplyPatch:
    """Tests for owner edits of a slot."""

    def test_empty_patch_returns_same_slot(self):
        slot = _slot()

        assert transitions.apply_patch(slot, SlotPatch(), _at("2024-11-21 08:00")) is slot

    def test_patch_with_current_status_is_a_no_op(self):
        slot = _slot(status=SlotStatus.BUSY)
        patch = SlotPatch(status=SlotStatus.BUSY)

        assert transitions.apply_patch(slot, patch, _at("2024-11-21 08:00")) is slot

    def test_changing_one_bound_revalidates_range(self):
        """Moving only the start past the existing end is rejected."""
        slot = _slot()

        with pytest.raises(ValidationError):
            transitions.apply_patch(
                slot, SlotPatch(start=_at("2024-11-25 11:00")), _at("2024-11-21 08:00")
            )

    def test_patch_updates_fields_and_timestamp(self):
        slot = _slot()
        now = _at("2024-11-21 08:00")

        updated = transitions.apply_patch(
            slot, SlotPatch(title="  Retro  ", end=_at("2024-11-25 11:00")), now
        )

        assert updated.title == "Retro"
        assert updated.end == _at("2024-11-25 11:00")
        assert updated.start == slot.start
        assert updated.updated_at == now

    def test_patch_cannot_lock_slot(self):
        with pytest.raises(ValidationError, match="reserved"):
            transitions.apply_patch(
                _slot(), SlotPatch(status=SlotStatus.SWAP_PENDING), _at("2024-11-21 08:00")
            )

    def test_blank_title_rejected(self):
        with pytest.raises(ValidationError, match="Title is required"):
            transitions.apply_patch(_slot(), SlotPatch(title="   "), _at("2024-11-21 08:00"))


class TestProposalRules:
    """Tests for the proposal guards and their order."""

    def test_offered_slot_must_belong_to_requester(self):
        offered = _slot("s2", owner_id="carol")
        requested = _slot("s1", owner_id="alice")

        with pytest.raises(ForbiddenError):
            transitions.check_proposal("bob", offered, requested)

    def test_self_swap_rejected(self):
        offered = _slot("s2", owner_id="bob")
        requested = _slot("s1", owner_id="bob")

        with pytest.raises(ValidationError, match="own slot"):
            transitions.check_proposal("bob", offered, requested)

    def test_ownership_checked_before_status(self):
        """A non-owner learns nothing about the slot's state."""
        offered = _slot("s2", owner_id="carol", status=SlotStatus.BUSY)
        requested = _slot("s1", owner_id="alice")

        with pytest.raises(ForbiddenError):
            transitions.check_proposal("bob", offered, requested)

    @pytest.mark.parametrize("status", [SlotStatus.BUSY, SlotStatus.SWAP_PENDING])
    def test_both_slots_must_be_swappable(self, status):
        swappable = _slot("s2", owner_id="bob")
        blocked = _slot("s1", owner_id="alice", status=status)

        with pytest.raises(ConflictError):
            transitions.check_proposal("bob", swappable, blocked)

        with pytest.raises(ConflictError):
            transitions.check_proposal(
                "bob", _slot("s2", owner_id="bob", status=status), _slot("s1", owner_id="alice")
            )


class TestResolution:
    """Tests for accepting and rejecting a request."""

    def test_exchange_swaps_owners(self):
        now = _at("2024-11-21 08:00")
        offered = _slot("s2", owner_id="bob", status=SlotStatus.SWAP_PENDING)
        requested = _slot("s1", owner_id="alice", status=SlotStatus.SWAP_PENDING)

        new_offered, new_requested, resolved = transitions.exchange_owners(
            _request(), offered, requested, now
        )

        assert new_offered.owner_id == "alice"
        assert new_requested.owner_id == "bob"
        assert new_offered.status is SlotStatus.BUSY
        assert new_requested.status is SlotStatus.BUSY
        assert resolved.status is SwapStatus.ACCEPTED
        assert resolved.updated_at == now

    def test_release_keeps_owners(self):
        offered = _slot("s2", owner_id="bob", status=SlotStatus.SWAP_PENDING)
        requested = _slot("s1", owner_id="alice", status=SlotStatus.SWAP_PENDING)

        new_offered, new_requested, resolved = transitions.release_slots(
            _request(), offered, requested, _at("2024-11-21 08:00")
        )

        assert (new_offered.owner_id, new_requested.owner_id) == ("bob", "alice")
        assert new_offered.status is SlotStatus.SWAPPABLE
        assert new_requested.status is SlotStatus.SWAPPABLE
        assert resolved.status is SwapStatus.REJECTED

    def test_answered_request_names_its_status(self):
        with pytest.raises(ConflictError, match="already been accepted"):
            transitions.check_response(_request(SwapStatus.ACCEPTED), "alice")

    def test_only_owner_may_respond_even_after_resolution(self):
        with pytest.raises(ForbiddenError):
            transitions.check_response(_request(SwapStatus.REJECTED), "carol")
