"""Selectors for the manifest store.

Read-only queries returning client snapshots. All load queries
prefetch slots and crew so building a snapshot costs a fixed number of
queries.
"""

from datetime import datetime

from django.db.models import Prefetch

from .models import DropzoneUser, Load, Slot
from .snapshots import (
    ActivityConfig,
    LoadSnapshot,
    ParticipantProfile,
    PassengerFields,
    PlaneSnapshot,
    RoleHolder,
    SlotSnapshot,
)


def _load_queryset():
    return (
        Load.objects.filter(deleted_at__isnull=True)
        .select_related(
            "plane",
            "pilot__user",
            "gca__user",
            "load_master__user",
        )
        .prefetch_related(
            Prefetch(
                "slots",
                queryset=Slot.objects.select_related("dropzone_user__user").prefetch_related("extras"),
            )
        )
    )


def _role_holder(dropzone_user: DropzoneUser | None) -> RoleHolder | None:
    if dropzone_user is None:
        return None
    return RoleHolder(id=dropzone_user.pk, name=dropzone_user.display_name)


def slot_snapshot(slot: Slot) -> SlotSnapshot:
    passenger = None
    if slot.passenger_name:
        passenger = PassengerFields(slot.passenger_name, slot.passenger_exit_weight)
    return SlotSnapshot(
        id=slot.pk,
        participant_id=slot.dropzone_user_id,
        participant_name=slot.dropzone_user.display_name,
        activity=ActivityConfig(
            jump_type_id=slot.jump_type_id,
            ticket_type_id=slot.ticket_type_id,
            extra_ids=tuple(sorted(extra.pk for extra in slot.extras.all())),
        ),
        passenger=passenger,
        group_number=slot.group_number,
        exit_weight=slot.exit_weight,
        cost=slot.cost,
    )


def load_snapshot(load: Load) -> LoadSnapshot:
    plane = None
    if load.plane is not None:
        plane = PlaneSnapshot(id=load.plane.pk, name=load.plane.name, max_slots=load.plane.max_slots)
    return LoadSnapshot(
        id=load.pk,
        name=load.name,
        load_number=load.load_number,
        max_slots=load.max_slots,
        plane=plane,
        pilot=_role_holder(load.pilot),
        gca=_role_holder(load.gca),
        load_master=_role_holder(load.load_master),
        dispatch_at=load.dispatch_at,
        has_landed=load.has_landed,
        is_open=load.is_open,
        slots=[slot_snapshot(slot) for slot in load.slots.all()],
    )


def get_load(load_id) -> LoadSnapshot:
    """One load with its slots. Raises Load.DoesNotExist."""
    return load_snapshot(_load_queryset().get(pk=load_id))


def list_loads(dropzone_id, since: datetime) -> list[LoadSnapshot]:
    """Loads of a dropzone created at or after `since`, newest first."""
    qs = _load_queryset().filter(dropzone_id=dropzone_id, created_at__gte=since).order_by("-load_number", "-created_at")
    return [load_snapshot(load) for load in qs]


def get_dropzone_user(dropzone_id, participant_id) -> DropzoneUser:
    """Raises DropzoneUser.DoesNotExist for members of another dropzone."""
    return DropzoneUser.objects.select_related("user", "role", "dropzone").get(
        pk=participant_id,
        dropzone_id=dropzone_id,
        deleted_at__isnull=True,
    )


def get_capabilities(dropzone_id, participant_id) -> frozenset:
    """Capabilities of the participant's current role (empty when unknown)."""
    try:
        return get_dropzone_user(dropzone_id, participant_id).capabilities
    except DropzoneUser.DoesNotExist:
        return frozenset()


def profile_snapshot(dropzone_user: DropzoneUser) -> ParticipantProfile:
    return ParticipantProfile(
        participant_id=dropzone_user.pk,
        name=dropzone_user.display_name,
        license_id=dropzone_user.license_id,
        membership_expires_at=dropzone_user.expires_at,
        exit_weight=dropzone_user.exit_weight,
        has_rig=dropzone_user.has_rig,
        rig_inspected=dropzone_user.rig_inspected,
        reserve_repack_expires_at=dropzone_user.reserve_repack_expires_at,
        credits=dropzone_user.credits,
    )


def get_profile(dropzone_id, participant_id) -> ParticipantProfile:
    return profile_snapshot(get_dropzone_user(dropzone_id, participant_id))
