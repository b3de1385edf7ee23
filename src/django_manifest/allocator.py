"""Slot allocation against a load's capacity snapshot.

All checks here are advisory: they give fast feedback and avoid requests
that cannot succeed. The backend re-validates every rule when it commits.
"""

import logging
import uuid
from datetime import datetime

from .eligibility import check_eligibility
from .exceptions import (
    CapacityExceeded,
    CollaboratorFieldError,
    Forbidden,
    LoadClosed,
    ManifestValidationError,
    NotEligible,
    PlaneTooSmall,
    TransportFailure,
)
from .lifecycle import accepts_allocation, ensure_not_landed
from .permissions import Capability
from .snapshots import ActivityConfig, LoadSnapshot, PassengerFields, PlaneSnapshot, SlotSnapshot

logger = logging.getLogger(__name__)


def new_idempotency_key() -> str:
    return uuid.uuid4().hex


def validate_activity(activity: ActivityConfig) -> dict[str, str]:
    """Field errors for a jump configuration (empty = valid)."""
    errors = {}
    if not activity.jump_type_id:
        errors["jump_type"] = "You must specify the type of jump"
    if not activity.ticket_type_id:
        errors["ticket_type"] = "You must select a ticket type to manifest"
    return errors


def validate_passenger(passenger: PassengerFields | None) -> dict[str, str]:
    """Field errors for tandem/guest passenger details (empty = valid)."""
    errors = {}
    if passenger is None:
        return errors
    if not (passenger.name or "").strip():
        errors["passenger_name"] = "Passenger name is required"
    if passenger.exit_weight is None or passenger.exit_weight <= 0:
        errors["passenger_exit_weight"] = "Exit weight seems too low?"
    return errors


class SlotAllocator:
    """Creates and removes individual slots for one manifest context."""

    def __init__(self, context):
        self.context = context

    def can_allocate(self, load: LoadSnapshot, count: int = 1, now: datetime | None = None) -> bool:
        """True iff the load has not landed and `count` more slots fit."""
        return (
            not load.has_landed
            and accepts_allocation(load, now)
            and load.slot_count + count <= load.max_slots
        )

    def check_capacity(self, load: LoadSnapshot, count: int = 1, now: datetime | None = None) -> None:
        """
        Raise unless `count` slots can be added to the load as one batch.

        Raises:
            LoadClosed: If the load has landed
            CapacityExceeded: If the batch does not fit
        """
        ensure_not_landed(load, now)
        if not self.can_allocate(load, count, now):
            raise CapacityExceeded(requested=count, available=load.available_slots)

    def check_eligible(self, participant_id, now: datetime | None = None) -> None:
        """Raise NotEligible if the participant's current profile blocks manifesting."""
        profile = self.context.profile(participant_id)
        result = check_eligibility(
            profile,
            credit_system_enabled=self.context.credit_system_enabled,
            as_of=now,
        )
        if not result.allowed:
            raise NotEligible(participant_id, result.reasons, result.messages)

    def allocate(
        self,
        load: LoadSnapshot,
        participant_id,
        activity: ActivityConfig,
        passenger: PassengerFields | None = None,
        *,
        idempotency_key: str | None = None,
        now: datetime | None = None,
    ) -> SlotSnapshot:
        """
        Allocate one slot on a load.

        Args:
            load: Target load snapshot (reconciled in place on success)
            participant_id: Dropzone user occupying the slot
            activity: Jump type, ticket type and extras
            passenger: Passenger details for tandem/guest bookings
            idempotency_key: Reuse the key from a failed attempt to retry safely
            now: Current time (defaults to now)

        Returns:
            The created SlotSnapshot

        Raises:
            Forbidden: If the actor may not manifest this participant
            ManifestValidationError: If activity or passenger fields are missing
            NotEligible: If the participant's profile blocks manifesting
            LoadClosed: If the load has landed or is closed to self-manifesting
            CapacityExceeded: If the load is full
            CollaboratorFieldError: If the backend rejects the request
            TransportFailure: If the backend cannot be reached
        """
        gate = self.context.gate()
        actor_is_target = participant_id == self.context.actor_id
        if not gate.allowed("manifest", actor_is_target):
            raise Forbidden("You do not have permission to manifest this person")

        errors = {**validate_activity(activity), **validate_passenger(passenger)}
        if errors:
            raise ManifestValidationError(errors)

        self.check_eligible(participant_id, now)

        ensure_not_landed(load, now)
        if not load.is_open and Capability.CREATE_USER_SLOT not in gate:
            raise LoadClosed(load.id, f"Load #{load.load_number} is not open for manifesting")
        self.check_capacity(load, 1, now)

        key = idempotency_key or new_idempotency_key()
        existing_ids = {slot.id for slot in load.slots}
        try:
            updated = self.context.run_mutation(
                load,
                self.context.backend.create_slots,
                load.id,
                [(participant_id, passenger)],
                activity,
                actor_id=self.context.actor_id,
                idempotency_key=key,
            )
        except TransportFailure as e:
            e.idempotency_key = e.idempotency_key or key
            raise

        created = [
            slot for slot in updated.slots
            if slot.participant_id == participant_id and slot.id not in existing_ids
        ]
        if not created:
            # Replayed request: the slot was already in the snapshot
            created = [slot for slot in updated.slots if slot.participant_id == participant_id]
        if not created:
            raise CollaboratorFieldError(errors=[f"No slot was created for participant {participant_id}"])
        logger.info(f"Manifested {participant_id} on load {load.id}")
        return created[-1]

    def deallocate(self, load: LoadSnapshot, slot: SlotSnapshot, now: datetime | None = None) -> LoadSnapshot:
        """
        Remove a slot from its load.

        Raises:
            Forbidden: If the actor may not remove this participant's slot
            LoadClosed: If the load has landed
            CollaboratorFieldError: If the backend rejects the request
            TransportFailure: If the backend cannot be reached
        """
        gate = self.context.gate()
        actor_is_target = slot.participant_id == self.context.actor_id
        if not gate.allowed("remove_slot", actor_is_target):
            raise Forbidden("You do not have permission to remove this slot")
        ensure_not_landed(load, now)

        updated = self.context.run_mutation(
            load,
            self.context.backend.delete_slot,
            slot.id,
            actor_id=self.context.actor_id,
        )
        logger.info(f"Removed slot {slot.id} from load {load.id}")
        return updated

    def reassign_plane(self, load: LoadSnapshot, plane: PlaneSnapshot, now: datetime | None = None) -> LoadSnapshot:
        """
        Move a load onto another plane.

        A smaller plane than the current slot count is rejected, never
        resolved by dropping slots.

        Raises:
            Forbidden: If the actor may not update loads
            LoadClosed: If the load has landed
            PlaneTooSmall: If the plane seats fewer than the current slot count
        """
        if not self.context.gate().allowed("update_load"):
            raise Forbidden("You do not have permission to update this load")
        ensure_not_landed(load, now)
        if load.slot_count > plane.max_slots:
            overflow = load.slot_count - plane.max_slots
            logger.warning(f"Rejected plane {plane.id} for load {load.id}: {overflow} over capacity")
            raise PlaneTooSmall(overflow)

        return self.context.run_mutation(
            load,
            self.context.backend.update_load,
            load.id,
            actor_id=self.context.actor_id,
            plane_id=plane.id,
        )
