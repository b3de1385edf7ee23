"""Backend interface consumed by the client core.

A backend executes mutations against the authoritative store and answers
with the authoritative load. It reports rejections by raising
CollaboratorFieldError (field errors keyed by domain field name plus
general messages), Forbidden, or TransportFailure when it cannot be reached.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable

from ..snapshots import ActivityConfig, LoadSnapshot, ParticipantProfile, PassengerFields


# Backend field key -> local field name
FIELD_MAP = {
    "jump_type": "jump_type",
    "ticket_type": "ticket_type",
    "extras": "extras",
    "extra_ids": "extras",
    "load": "load",
    "credits": "credits",
    "plane": "plane",
    "pilot": "pilot",
    "gca": "gca",
    "load_master": "load_master",
    "passenger_name": "passenger_name",
    "passenger_exit_weight": "passenger_exit_weight",
    "user_role": "role",
    "expires_at": "expires_at",
}


def map_field_errors(
    field_errors: dict[str, str],
    errors: Iterable[str] = (),
) -> tuple[dict[str, str], list[str]]:
    """
    Map backend field errors onto local fields.

    Known keys go to their local field (the first message wins when two
    keys share a field); unknown keys are demoted to general errors.

    Returns:
        Tuple of (local_field_errors, general_errors)
    """
    mapped: dict[str, str] = {}
    general = list(errors)
    for key, message in field_errors.items():
        local = FIELD_MAP.get(key)
        if local is None:
            general.append(message)
        else:
            mapped.setdefault(local, message)
    return mapped, general


class ManifestBackend(ABC):
    """Authoritative store the client core delegates every mutation to."""

    @abstractmethod
    def fetch_loads(self, dropzone_id, since: datetime) -> list[LoadSnapshot]:
        """Loads of the dropzone created at or after `since`, newest first."""

    @abstractmethod
    def fetch_load(self, load_id) -> LoadSnapshot:
        """One load with its slots."""

    @abstractmethod
    def fetch_capabilities(self, dropzone_id, participant_id) -> frozenset[str]:
        """Capabilities granted by the participant's current role."""

    @abstractmethod
    def fetch_profile(self, dropzone_id, participant_id) -> ParticipantProfile:
        """Eligibility snapshot of a dropzone user."""

    @abstractmethod
    def create_load(
        self,
        dropzone_id,
        *,
        actor_id,
        plane_id=None,
        name: str = "",
        max_slots: int | None = None,
        is_open: bool = True,
    ) -> LoadSnapshot:
        """Create a load."""

    @abstractmethod
    def create_slots(
        self,
        load_id,
        members: list[tuple[int, PassengerFields | None]],
        activity: ActivityConfig,
        *,
        actor_id,
        idempotency_key: str,
        group: bool = False,
    ) -> LoadSnapshot:
        """Create one slot per member in a single all-or-nothing operation.

        Members share a new group number when `group` is set or there is
        more than one. Replaying an idempotency key with the same request
        returns the load without creating new slots; reusing it for a
        different request is rejected with a field error.
        """

    @abstractmethod
    def delete_slot(self, slot_id, *, actor_id) -> LoadSnapshot:
        """Remove a slot; returns its load."""

    @abstractmethod
    def update_load(self, load_id, *, actor_id, **changes) -> LoadSnapshot:
        """Apply load attribute changes.

        Accepted keys: pilot_id, gca_id, load_master_id, plane_id, is_open,
        dispatch_at, has_landed.
        """
