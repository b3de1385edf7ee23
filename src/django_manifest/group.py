"""Group manifest: several participants, one jump configuration, one commit.

A group request is indivisible. It is validated as a whole before the
backend is called, and the backend creates every slot in one transaction
under a shared group number, or none of them.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from .allocator import SlotAllocator, new_idempotency_key, validate_activity, validate_passenger
from .backends.base import map_field_errors
from .exceptions import (
    CollaboratorFieldError,
    Forbidden,
    LoadClosed,
    ManifestValidationError,
    TransportFailure,
)
from .lifecycle import ensure_not_landed
from .permissions import Capability
from .snapshots import ActivityConfig, LoadSnapshot, PassengerFields

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GroupMember:
    participant_id: int
    passenger: PassengerFields | None = None


@dataclass(frozen=True)
class GroupAllocationRequest:
    """Ordered members sharing one activity configuration on one load."""

    load_id: int
    members: tuple[GroupMember, ...]
    activity: ActivityConfig
    idempotency_key: str

    @property
    def member_ids(self) -> list:
        return [m.participant_id for m in self.members]


class ManifestGroupTransaction:
    """Collects a group manifest and commits it as one unit.

    Field errors are kept per field (`errors`) for form display; a
    general message goes to `error`. Changing a field clears its error.

    Usage:
        group = context.group(load)
        group.add_member(7)
        group.add_member(8)
        group.set_jump_type(1)
        group.set_ticket_type(2)
        load = group.submit()
    """

    def __init__(self, context, load: LoadSnapshot):
        self.context = context
        self.load = load
        self.reset()

    def reset(self) -> None:
        """Clear the request and its validation state."""
        self.members: list[GroupMember] = []
        self.jump_type_id = None
        self.ticket_type_id = None
        self.extra_ids: tuple = ()
        self.errors: dict[str, str] = {}
        self.error: str | None = None
        self.idempotency_key = new_idempotency_key()
        self._key_sent = False

    def _changed(self) -> None:
        # A key already sent to the backend belongs to that exact request
        if self._key_sent:
            self.idempotency_key = new_idempotency_key()
            self._key_sent = False

    # ------------------------------------------------------------------
    # Form fields
    # ------------------------------------------------------------------

    def add_member(self, participant_id, passenger: PassengerFields | None = None) -> GroupMember:
        self._changed()
        member = GroupMember(participant_id, passenger)
        self.members.append(member)
        self.errors.pop("members", None)
        return member

    def remove_member(self, participant_id) -> None:
        self._changed()
        self.members = [m for m in self.members if m.participant_id != participant_id]

    def set_jump_type(self, jump_type_id) -> None:
        self._changed()
        self.jump_type_id = jump_type_id
        self.errors.pop("jump_type", None)

    def set_ticket_type(self, ticket_type_id) -> None:
        self._changed()
        self.ticket_type_id = ticket_type_id
        self.errors.pop("ticket_type", None)

    def set_extras(self, extra_ids) -> None:
        self._changed()
        self.extra_ids = tuple(extra_ids or ())
        self.errors.pop("extras", None)
        self.errors.pop("credits", None)

    @property
    def activity(self) -> ActivityConfig:
        return ActivityConfig(self.jump_type_id, self.ticket_type_id, self.extra_ids)

    @property
    def request(self) -> GroupAllocationRequest:
        return GroupAllocationRequest(
            load_id=self.load.id,
            members=tuple(self.members),
            activity=self.activity,
            idempotency_key=self.idempotency_key,
        )

    # ------------------------------------------------------------------
    # Validation and commit
    # ------------------------------------------------------------------

    def validate(self) -> bool:
        """Check required fields locally. Sets `errors`; returns True if valid."""
        errors = {}
        if not self.members:
            errors["members"] = "Select at least one person to manifest"
        errors.update(validate_activity(self.activity))
        for member in self.members:
            for field, message in validate_passenger(member.passenger).items():
                errors.setdefault(field, message)
        self.errors = errors
        return not errors

    def check(self, now: datetime | None = None) -> None:
        """
        Validate the whole request without calling the backend.

        Raises:
            ManifestValidationError: If required fields are missing
            Forbidden: If the actor may not form this group or manifest a member
            NotEligible: If any member's profile blocks manifesting
            LoadClosed: If the load has landed or is closed to the actor
            CapacityExceeded: If the full batch does not fit the load
        """
        if not self.validate():
            raise ManifestValidationError(self.errors)

        request = self.request
        actor_id = self.context.actor_id
        gate = self.context.gate()

        if not gate.can_form_group(actor_id, request.member_ids):
            raise Forbidden("You do not have permission to manifest this group")
        for participant_id in request.member_ids:
            if not gate.allowed("manifest", participant_id == actor_id):
                raise Forbidden("You do not have permission to manifest this person")

        allocator = SlotAllocator(self.context)
        for participant_id in dict.fromkeys(request.member_ids):
            allocator.check_eligible(participant_id, now)

        ensure_not_landed(self.load, now)
        if not self.load.is_open and Capability.CREATE_USER_SLOT not in gate:
            raise LoadClosed(self.load.id, f"Load #{self.load.load_number} is not open for manifesting")
        allocator.check_capacity(self.load, len(request.members), now)

    def submit(self, now: datetime | None = None) -> LoadSnapshot:
        """
        Commit the group as one batched backend call.

        On success every member holds a slot sharing one group number and
        the transaction is reset. On failure no slot was created; backend
        field errors are mapped onto `errors` and general ones are joined into
        `error`.

        Returns:
            The reconciled load snapshot
        """
        self.error = None
        try:
            self.check(now)
        except ManifestValidationError:
            raise
        except Exception as e:
            self.error = str(e)
            raise

        request = self.request
        self._key_sent = True
        try:
            load = self.context.run_mutation(
                self.load,
                self.context.backend.create_slots,
                request.load_id,
                [(m.participant_id, m.passenger) for m in request.members],
                request.activity,
                actor_id=self.context.actor_id,
                idempotency_key=request.idempotency_key,
                group=True,
            )
        except CollaboratorFieldError as e:
            mapped, general = map_field_errors(e.field_errors, e.errors)
            self.errors.update(mapped)
            self.error = "; ".join(general) or None
            raise
        except (Forbidden, TransportFailure) as e:
            if isinstance(e, TransportFailure):
                e.idempotency_key = e.idempotency_key or request.idempotency_key
            self.error = str(e)
            raise

        logger.info(f"Manifested group of {len(request.members)} on load {request.load_id}")
        self.reset()
        return load
