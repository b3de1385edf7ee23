"""Tests for ManifestGroupTransaction."""

from decimal import Decimal

import pytest

from django_manifest.exceptions import (
    CapacityExceeded,
    CollaboratorFieldError,
    Forbidden,
    ManifestValidationError,
    NotEligible,
    TransportFailure,
)
from django_manifest.snapshots import PassengerFields, SlotSnapshot
from tests.conftest import ACTOR_ID, OTHER_ID, THIRD_ID, eligible_profile


def fill(group, *participant_ids):
    for participant_id in participant_ids:
        group.add_member(participant_id)
    group.set_jump_type(1)
    group.set_ticket_type(2)
    return group


class TestValidation:
    """Local validation happens before any backend call."""

    def test_missing_ticket_type(self, context, backend, load):
        """Jump type set, ticket type unset: error on ticket_type, nothing sent."""
        group = context.group(load)
        group.add_member(ACTOR_ID)
        group.set_jump_type(1)

        with pytest.raises(ManifestValidationError):
            group.submit()

        assert group.errors == {"ticket_type": "You must select a ticket type to manifest"}
        assert backend.calls == []

    def test_jump_and_ticket_type_reported_together(self, context, load):
        group = context.group(load)
        group.add_member(ACTOR_ID)

        assert group.validate() is False
        assert set(group.errors) == {"jump_type", "ticket_type"}

    def test_empty_group(self, context, load):
        group = context.group(load)
        group.set_jump_type(1)
        group.set_ticket_type(2)

        assert group.validate() is False
        assert "members" in group.errors

    def test_setting_a_field_clears_its_error(self, context, load):
        group = context.group(load)
        group.add_member(ACTOR_ID)
        group.validate()

        group.set_ticket_type(2)

        assert "ticket_type" not in group.errors
        assert "jump_type" in group.errors


class TestSubmit:
    """Tests for committing a group."""

    def test_all_members_share_a_group_number(self, context, backend, load):
        """N members yield exactly N slots with one shared group number."""
        group = fill(context.group(load), ACTOR_ID, OTHER_ID, THIRD_ID)
        key = group.idempotency_key

        result = group.submit()

        assert result is load
        assert load.slot_count == 3
        numbers = {slot.group_number for slot in load.slots}
        assert len(numbers) == 1 and None not in numbers
        assert len(load.group(numbers.pop())) == 3
        assert [call[0] for call in backend.calls] == ["create_slots"]
        assert backend.calls[0][4] == key

    def test_success_resets_transaction(self, context, load):
        group = fill(context.group(load), ACTOR_ID, OTHER_ID)
        key = group.idempotency_key

        group.submit()

        assert group.members == []
        assert group.ticket_type_id is None
        assert group.errors == {}
        assert group.idempotency_key != key

    def test_group_that_does_not_fit_creates_nothing(self, context, backend, load):
        backend.loads[1].slots.extend(SlotSnapshot(id=300 + i, participant_id=40 + i) for i in range(2))
        context.refresh()
        group = fill(context.group(load), ACTOR_ID, OTHER_ID, THIRD_ID)

        with pytest.raises(CapacityExceeded):
            group.submit()

        assert load.slot_count == 2
        assert backend.calls == []
        assert group.error

    def test_one_ineligible_member_blocks_the_group(self, context, backend, load):
        backend.add_profile(eligible_profile(THIRD_ID, exit_weight=None))
        group = fill(context.group(load), ACTOR_ID, OTHER_ID, THIRD_ID)

        with pytest.raises(NotEligible) as exc_info:
            group.submit()

        assert exc_info.value.participant_id == THIRD_ID
        assert load.slot_count == 0
        assert backend.calls == []

    def test_self_only_grant_cannot_add_others(self, context, backend, load):
        backend.capabilities[ACTOR_ID] = {"create_slot", "create_user_slot_with_self"}
        group = fill(context.group(load), OTHER_ID)

        assert [m.participant_id for m in group.members] == [ACTOR_ID, OTHER_ID]
        with pytest.raises(Forbidden):
            group.submit()

        assert backend.calls == []

    def test_self_only_grant_with_dependent(self, context, backend, load):
        """The actor plus a passenger booked on their own account."""
        backend.capabilities[ACTOR_ID] = {"create_slot", "create_user_slot_with_self"}
        group = context.group(load)
        group.add_member(ACTOR_ID, PassengerFields("Guest", Decimal("70")))
        group.set_jump_type(1)
        group.set_ticket_type(2)

        group.submit()

        assert load.slot_count == 2
        assert [slot.passenger for slot in load.slots] == [None, PassengerFields("Guest", Decimal("70"))]

    def test_backend_field_errors_are_mapped(self, context, backend, load):
        backend.fail_next = CollaboratorFieldError(
            {"extra_ids": "Video is not available", "user_role": "Role expired", "weather": "Too windy"},
            ["Try again later"],
        )
        group = fill(context.group(load), ACTOR_ID, OTHER_ID)

        with pytest.raises(CollaboratorFieldError):
            group.submit()

        assert group.errors == {"extras": "Video is not available", "role": "Role expired"}
        assert group.error == "Try again later; Too windy"
        assert load.slot_count == 0
        assert group.members

    def test_transport_failure_keeps_key_for_retry(self, context, backend, load):
        backend.fail_next = TransportFailure()
        backend.commit_before_failing = True
        group = fill(context.group(load), ACTOR_ID, OTHER_ID)
        key = group.idempotency_key

        with pytest.raises(TransportFailure) as exc_info:
            group.submit()

        assert exc_info.value.idempotency_key == key
        assert group.idempotency_key == key
        assert group.error

        group.submit()

        assert backend.loads[1].slot_count == 2
        assert load.slot_count == 2

    def test_editing_after_failed_submit_sends_a_new_key(self, context, backend, load):
        """A changed request never replays the result of the one sent before it."""
        backend.fail_next = TransportFailure()
        backend.commit_before_failing = True
        group = fill(context.group(load), ACTOR_ID, OTHER_ID)
        first_key = group.idempotency_key

        with pytest.raises(TransportFailure):
            group.submit()

        group.remove_member(OTHER_ID)
        group.add_member(THIRD_ID)
        group.submit()

        assert backend.calls[1][4] != first_key
        assert backend.loads[1].slot_count == 4
        assert THIRD_ID in [slot.participant_id for slot in load.slots]

    def test_editing_before_submit_keeps_the_key(self, context, load):
        group = fill(context.group(load), ACTOR_ID)
        key = group.idempotency_key

        group.add_member(OTHER_ID)
        group.set_extras([3])

        assert group.idempotency_key == key

    def test_single_member_gets_a_group_number(self, context, load):
        group = fill(context.group(load), ACTOR_ID)

        group.submit()

        (slot,) = load.slots
        assert slot.group_number is not None
