"""Tests for SlotAllocator."""

import random
from decimal import Decimal

import pytest

from django_manifest.exceptions import (
    CapacityExceeded,
    CollaboratorFieldError,
    Forbidden,
    LoadClosed,
    ManifestValidationError,
    NotEligible,
    PlaneTooSmall,
    TransportFailure,
)
from django_manifest.context import ManifestContext
from django_manifest.snapshots import (
    ActivityConfig,
    LoadSnapshot,
    PassengerFields,
    PlaneSnapshot,
    SlotSnapshot,
)
from tests.conftest import ACTOR_ID, OTHER_ID, THIRD_ID, eligible_profile

FUN_JUMP = ActivityConfig(jump_type_id=1, ticket_type_id=2)


def full_load(load_id=2, max_slots=4):
    return LoadSnapshot(
        id=load_id,
        load_number=2,
        max_slots=max_slots,
        slots=[SlotSnapshot(id=100 + i, participant_id=20 + i) for i in range(max_slots)],
    )


class TestAllocate:
    """Tests for SlotAllocator.allocate."""

    def test_allocate_self(self, context, backend, load):
        slot = context.allocator().allocate(load, ACTOR_ID, FUN_JUMP)

        assert slot.participant_id == ACTOR_ID
        assert load.slot_count == 1
        assert load.available_slots == 3
        assert backend.loads[1].slot_count == 1

    def test_full_load_rejected_without_backend_call(self, backend):
        """max_slots=4 with 4 slots: CapacityExceeded and the count stays 4."""
        backend.add_load(full_load())
        context = ManifestContext.open(backend, dropzone_id=1, actor_id=ACTOR_ID)
        load = context.get_load(2)

        with pytest.raises(CapacityExceeded):
            context.allocator().allocate(load, ACTOR_ID, FUN_JUMP)

        assert load.slot_count == 4
        assert load.is_full is True
        assert backend.calls == []

    def test_manifesting_others_needs_others_grant(self, context, backend, load):
        backend.capabilities[ACTOR_ID] = {"create_slot"}

        with pytest.raises(Forbidden):
            context.allocator().allocate(load, OTHER_ID, FUN_JUMP)

        assert backend.calls == []

    def test_ineligible_participant(self, context, backend, load):
        backend.add_profile(eligible_profile(OTHER_ID, rig_inspected=False))

        with pytest.raises(NotEligible) as exc_info:
            context.allocator().allocate(load, OTHER_ID, FUN_JUMP)

        assert exc_info.value.reasons == ["inspection_required"]
        assert backend.calls == []

    def test_credit_check_follows_context_flag(self, backend, load):
        backend.add_profile(eligible_profile(ACTOR_ID, credits=Decimal("0")))
        context = ManifestContext.open(backend, 1, ACTOR_ID, credit_system_enabled=True)

        with pytest.raises(NotEligible) as exc_info:
            context.allocator().allocate(context.get_load(1), ACTOR_ID, FUN_JUMP)

        assert exc_info.value.reasons == ["insufficient_credits"]

    def test_missing_jump_and_ticket_type(self, context, backend, load):
        with pytest.raises(ManifestValidationError) as exc_info:
            context.allocator().allocate(load, ACTOR_ID, ActivityConfig())

        assert set(exc_info.value.errors) == {"jump_type", "ticket_type"}
        assert exc_info.value.errors["ticket_type"] == "You must select a ticket type to manifest"

    def test_passenger_weight_must_be_positive(self, context, load):
        with pytest.raises(ManifestValidationError) as exc_info:
            context.allocator().allocate(load, ACTOR_ID, FUN_JUMP, PassengerFields("Guest", Decimal("0")))

        assert exc_info.value.errors == {"passenger_exit_weight": "Exit weight seems too low?"}

    def test_closed_load_blocks_self_manifest(self, context, backend, load):
        """Without the others grant a closed load cannot be self-manifested."""
        backend.capabilities[ACTOR_ID] = {"create_slot"}
        load.is_open = False

        with pytest.raises(LoadClosed):
            context.allocator().allocate(load, ACTOR_ID, FUN_JUMP)

    def test_closed_load_open_to_staff(self, context, backend, load):
        load.is_open = False

        slot = context.allocator().allocate(load, OTHER_ID, FUN_JUMP)

        assert slot.participant_id == OTHER_ID

    def test_landed_load(self, context, load):
        load.has_landed = True

        with pytest.raises(LoadClosed):
            context.allocator().allocate(load, ACTOR_ID, FUN_JUMP)

    def test_backend_rejection_refetches_load(self, context, backend, load):
        """A stale snapshot is corrected from the backend after a rejection."""
        backend.loads[1].slots.extend(SlotSnapshot(id=200 + i, participant_id=30 + i) for i in range(4))

        with pytest.raises(CollaboratorFieldError) as exc_info:
            context.allocator().allocate(load, ACTOR_ID, FUN_JUMP)

        assert exc_info.value.field_errors == {"load": "Load is full"}
        assert load.slot_count == 4

    def test_retry_after_lost_response_creates_no_duplicate(self, context, backend, load):
        """Retrying with the key from a TransportFailure replays the request."""
        backend.fail_next = TransportFailure()
        backend.commit_before_failing = True

        with pytest.raises(TransportFailure) as exc_info:
            context.allocator().allocate(load, ACTOR_ID, FUN_JUMP)

        key = exc_info.value.idempotency_key
        assert key

        slot = context.allocator().allocate(load, ACTOR_ID, FUN_JUMP, idempotency_key=key)

        assert slot.participant_id == ACTOR_ID
        assert backend.loads[1].slot_count == 1
        assert load.slot_count == 1

    def test_key_from_another_request_is_rejected(self, context, backend, load):
        """A used key cannot stand in for manifesting someone else."""
        allocator = context.allocator()
        allocator.allocate(load, ACTOR_ID, FUN_JUMP, idempotency_key="k1")

        with pytest.raises(CollaboratorFieldError) as exc_info:
            allocator.allocate(load, OTHER_ID, FUN_JUMP, idempotency_key="k1")

        assert "idempotency_key" in exc_info.value.field_errors
        assert [slot.participant_id for slot in backend.loads[1].slots] == [ACTOR_ID]
        assert load.slot_count == 1


class TestDeallocate:
    """Tests for SlotAllocator.deallocate."""

    def test_remove_own_slot(self, context, backend, load):
        allocator = context.allocator()
        slot = allocator.allocate(load, ACTOR_ID, FUN_JUMP)

        allocator.deallocate(load, slot)

        assert load.slot_count == 0
        assert backend.loads[1].slot_count == 0

    def test_remove_other_needs_others_grant(self, context, backend, load):
        slot = context.allocator().allocate(load, OTHER_ID, FUN_JUMP)
        backend.capabilities[ACTOR_ID] = {"delete_slot"}

        with pytest.raises(Forbidden):
            context.allocator().deallocate(load, slot)

        assert load.slot_count == 1

    def test_landed_load(self, context, load):
        slot = context.allocator().allocate(load, ACTOR_ID, FUN_JUMP)
        load.has_landed = True

        with pytest.raises(LoadClosed):
            context.allocator().deallocate(load, slot)


class TestReassignPlane:
    """Tests for SlotAllocator.reassign_plane."""

    def test_smaller_plane_rejected(self, context, backend, load):
        """The plane is unchanged and the message names the overflow."""
        allocator = context.allocator()
        for participant_id in (ACTOR_ID, OTHER_ID, THIRD_ID):
            allocator.allocate(load, participant_id, FUN_JUMP)
        small = PlaneSnapshot(id=5, name="Cessna", max_slots=1)

        with pytest.raises(PlaneTooSmall) as exc_info:
            allocator.reassign_plane(load, small)

        assert exc_info.value.overflow == 2
        assert str(exc_info.value) == "You need to take 2 people off the load to fit on this plane"
        assert isinstance(exc_info.value, CapacityExceeded)
        assert load.plane is None
        assert not any(call[0] == "update_load" for call in backend.calls)

    def test_landed_load(self, context, backend, load):
        load.has_landed = True
        caravan = PlaneSnapshot(id=6, name="Caravan", max_slots=16)
        backend.planes[6] = caravan

        with pytest.raises(LoadClosed):
            context.allocator().reassign_plane(load, caravan)

        assert load.plane is None
        assert backend.calls == []

    def test_larger_plane_accepted(self, context, backend, load):
        caravan = PlaneSnapshot(id=6, name="Caravan", max_slots=16)
        backend.planes[6] = caravan

        context.allocator().reassign_plane(load, caravan)

        assert load.plane == caravan
        assert load.max_slots == 16


class TestCapacityProperty:
    """slot_count never exceeds max_slots under any allocate/deallocate sequence."""

    @pytest.mark.parametrize("seed", range(5))
    def test_random_sequences(self, context, backend, load, seed):
        rng = random.Random(seed)
        allocator = context.allocator()
        participants = [ACTOR_ID, OTHER_ID, THIRD_ID]

        for _ in range(40):
            if load.slots and rng.random() < 0.4:
                allocator.deallocate(load, rng.choice(load.slots))
            else:
                try:
                    allocator.allocate(load, rng.choice(participants), FUN_JUMP)
                except CapacityExceeded:
                    assert load.is_full
            assert load.slot_count <= load.max_slots
            assert backend.loads[1].slot_count == load.slot_count
