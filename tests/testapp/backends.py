"""In-memory backend for exercising the client core without a database."""

import itertools
from dataclasses import replace
from decimal import Decimal

from django_manifest.backends.base import ManifestBackend
from django_manifest.exceptions import CollaboratorFieldError, Forbidden
from django_manifest.snapshots import LoadSnapshot, ParticipantProfile, PlaneSnapshot, RoleHolder, SlotSnapshot


class InMemoryBackend(ManifestBackend):
    """Authoritative store kept in dicts.

    `calls` records every mutation. Set `fail_next` to an exception to
    make the next mutation raise it; with `commit_before_failing` the
    mutation is applied first, as when a response is lost in transit.
    """

    def __init__(self):
        self.loads: dict[int, LoadSnapshot] = {}
        self.capabilities: dict[int, set] = {}
        self.profiles: dict[int, ParticipantProfile] = {}
        self.planes: dict[int, PlaneSnapshot] = {}
        self.keys: dict[str, tuple] = {}
        self.calls: list[tuple] = []
        self.fetches = 0
        self.fail_next = None
        self.commit_before_failing = False
        self._ids = itertools.count(1000)
        self._groups = itertools.count(1)

    # Setup helpers

    def add_load(self, load: LoadSnapshot) -> LoadSnapshot:
        self.loads[load.id] = replace(load, slots=list(load.slots))
        return load

    def grant(self, participant_id, *capabilities) -> None:
        self.capabilities.setdefault(participant_id, set()).update(str(c) for c in capabilities)

    def add_profile(self, profile: ParticipantProfile) -> ParticipantProfile:
        self.profiles[profile.participant_id] = profile
        return profile

    def _copy(self, load_id) -> LoadSnapshot:
        load = self.loads[load_id]
        return replace(load, slots=list(load.slots))

    def _maybe_fail(self, apply):
        if self.fail_next is None:
            return apply()
        error, self.fail_next = self.fail_next, None
        if self.commit_before_failing:
            apply()
        raise error

    # ManifestBackend

    def fetch_loads(self, dropzone_id, since):
        self.fetches += 1
        return [self._copy(load_id) for load_id in sorted(self.loads, reverse=True)]

    def fetch_load(self, load_id):
        self.fetches += 1
        return self._copy(load_id)

    def fetch_capabilities(self, dropzone_id, participant_id):
        return frozenset(self.capabilities.get(participant_id, ()))

    def fetch_profile(self, dropzone_id, participant_id):
        return self.profiles[participant_id]

    def create_load(self, dropzone_id, *, actor_id, plane_id=None, name="", max_slots=None, is_open=True):
        self.calls.append(("create_load", dropzone_id, plane_id))
        if "create_load" not in self.capabilities.get(actor_id, ()):
            raise Forbidden()

        def apply():
            load_id = next(self._ids)
            number = max((l.load_number for l in self.loads.values()), default=0) + 1
            self.loads[load_id] = LoadSnapshot(
                id=load_id,
                name=name,
                load_number=number,
                max_slots=max_slots or 0,
                is_open=is_open,
            )
            return self._copy(load_id)

        return self._maybe_fail(apply)

    def create_slots(self, load_id, members, activity, *, actor_id, idempotency_key, group=False):
        self.calls.append(("create_slots", load_id, tuple(members), activity, idempotency_key))
        request = (load_id, tuple(members), activity, group)
        if idempotency_key in self.keys:
            if self.keys[idempotency_key] != request:
                raise CollaboratorFieldError(
                    {"idempotency_key": "This request key was already used for a different request"}
                )
            return self._copy(load_id)

        load = self.loads[load_id]
        if load.has_landed:
            raise CollaboratorFieldError({"load": f"Load #{load.load_number} has landed"})
        if load.slot_count + len(members) > load.max_slots:
            raise CollaboratorFieldError({"load": "Load is full"})
        if not activity.ticket_type_id:
            raise CollaboratorFieldError({"ticket_type": "You must select a ticket type to manifest"})

        def apply():
            group_number = next(self._groups) if group or len(members) > 1 else None
            for participant_id, passenger in members:
                load.slots.append(
                    SlotSnapshot(
                        id=next(self._ids),
                        participant_id=participant_id,
                        activity=activity,
                        passenger=passenger,
                        group_number=group_number,
                        cost=Decimal("0"),
                    )
                )
            self.keys[idempotency_key] = request
            return self._copy(load_id)

        return self._maybe_fail(apply)

    def delete_slot(self, slot_id, *, actor_id):
        self.calls.append(("delete_slot", slot_id))
        for load in self.loads.values():
            slot = load.get_slot(slot_id)
            if slot is not None:
                break
        else:
            raise CollaboratorFieldError(errors=["Slot not found"])

        def apply():
            load.slots.remove(slot)
            return self._copy(load.id)

        return self._maybe_fail(apply)

    def update_load(self, load_id, *, actor_id, **changes):
        self.calls.append(("update_load", load_id, changes))
        load = self.loads[load_id]

        def apply():
            for field, value in changes.items():
                if field == "plane_id":
                    load.plane = self.planes[value]
                    load.max_slots = load.plane.max_slots
                elif field.endswith("_id"):
                    seat = field[: -len("_id")]
                    setattr(load, seat, None if value is None else RoleHolder(value, f"User {value}"))
                else:
                    setattr(load, field, value)
            return self._copy(load_id)

        return self._maybe_fail(apply)
