"""Service functions for the manifest store.

Provides:
- create_load: Open a new load for today
- create_slots: Manifest one or more dropzone users on a load, all or none
- delete_slot: Remove a slot and refund its credits
- update_load: Crew, plane, open/closed, dispatch call and landing

Every rule the client checks is re-checked here under row locks. Failures
raise ServiceFieldError keyed by domain field name, or
ServicePermissionDenied, inside the transaction so nothing partial is
committed.
"""

import logging
from decimal import Decimal

from django.db import transaction
from django.db.models import Max
from django.utils import timezone

from . import lifecycle
from .eligibility import check_eligibility
from .exceptions import (
    InvalidTransition,
    LoadClosed,
    MissingCrew,
    MissingPilot,
    PlaneTooSmall,
    ServiceFieldError,
    ServicePermissionDenied,
)
from .idempotency import idempotent
from .models import (
    CreditTransaction,
    DropzoneUser,
    Extra,
    JumpType,
    Load,
    Plane,
    Slot,
    TicketType,
)
from .permissions import CREW_CAPABILITIES, Capability, PermissionGate, required_capability
from .selectors import profile_snapshot
from .snapshots import ActivityConfig, PassengerFields

logger = logging.getLogger(__name__)

LOAD_CHANGE_FIELDS = frozenset({
    "pilot_id",
    "gca_id",
    "load_master_id",
    "plane_id",
    "is_open",
    "dispatch_at",
    "has_landed",
})


def _get_actor(actor_id) -> DropzoneUser:
    try:
        return DropzoneUser.objects.select_related("role", "user").get(pk=actor_id, deleted_at__isnull=True)
    except DropzoneUser.DoesNotExist:
        raise ServicePermissionDenied("membership")


def _require(actor: DropzoneUser, capability: str) -> None:
    if str(capability) not in actor.capabilities:
        raise ServicePermissionDenied(str(capability))


def _lock_load(load_id, actor: DropzoneUser) -> Load:
    try:
        return Load.objects.select_for_update().get(
            pk=load_id,
            dropzone_id=actor.dropzone_id,
            deleted_at__isnull=True,
        )
    except Load.DoesNotExist:
        raise ServiceFieldError({"load": "Load not found"})


def _next_load_number(dropzone_id) -> int:
    """Next load number for the dropzone's current day."""
    start_of_day = timezone.localtime().replace(hour=0, minute=0, second=0, microsecond=0)
    last = Load.objects.filter(
        dropzone_id=dropzone_id,
        created_at__gte=start_of_day,
    ).aggregate(last=Max("load_number"))["last"]
    return (last or 0) + 1


@transaction.atomic
def create_load(
    dropzone_id,
    *,
    actor_id,
    plane_id=None,
    name: str = "",
    max_slots: int | None = None,
    is_open: bool = True,
) -> Load:
    """
    Create a load for today.

    Args:
        dropzone_id: Dropzone the load belongs to
        actor_id: Dropzone user creating the load (needs create_load)
        plane_id: Optional plane; its capacity is the default max_slots
        name: Optional display name
        max_slots: Seat count, at most the plane's capacity
        is_open: Whether the load accepts self-manifesting

    Returns:
        The created Load

    Raises:
        ServicePermissionDenied: If the actor lacks create_load
        ServiceFieldError: If the plane or capacity is invalid
    """
    actor = _get_actor(actor_id)
    if str(actor.dropzone_id) != str(dropzone_id):
        raise ServicePermissionDenied("membership")
    _require(actor, Capability.CREATE_LOAD)

    plane = None
    if plane_id is not None:
        try:
            plane = Plane.objects.get(pk=plane_id, dropzone_id=dropzone_id, deleted_at__isnull=True)
        except Plane.DoesNotExist:
            raise ServiceFieldError({"plane": "Plane not found"})

    if max_slots is None:
        if plane is None:
            raise ServiceFieldError({"plane": "Select a plane or a number of slots"})
        max_slots = plane.max_slots
    if max_slots <= 0:
        raise ServiceFieldError(errors=["A load needs at least one slot"])
    if plane is not None and max_slots > plane.max_slots:
        raise ServiceFieldError({"plane": f"{plane.name} only seats {plane.max_slots}"})

    # Serialize load numbering per dropzone
    list(Load.objects.select_for_update().filter(dropzone_id=dropzone_id).values_list("pk", flat=True))

    load = Load.objects.create(
        dropzone_id=dropzone_id,
        name=name,
        load_number=_next_load_number(dropzone_id),
        plane=plane,
        max_slots=max_slots,
        is_open=is_open,
    )
    logger.info(f"Created load #{load.load_number} ({load.pk}) for dropzone {dropzone_id}")
    return load


def _resolve_activity(dropzone_id, activity: ActivityConfig):
    """Look up jump type, ticket type and extras; collect field errors."""
    field_errors = {}
    jump_type = ticket_type = None

    if activity.jump_type_id:
        jump_type = JumpType.objects.filter(pk=activity.jump_type_id, deleted_at__isnull=True).first()
    if jump_type is None:
        field_errors["jump_type"] = "You must specify the type of jump"

    if activity.ticket_type_id:
        ticket_type = TicketType.objects.filter(
            pk=activity.ticket_type_id,
            dropzone_id=dropzone_id,
            deleted_at__isnull=True,
        ).first()
    if ticket_type is None:
        field_errors["ticket_type"] = "You must select a ticket type to manifest"

    extra_ids = set(activity.extra_ids or ())
    extras = list(Extra.objects.filter(pk__in=extra_ids, dropzone_id=dropzone_id, deleted_at__isnull=True))
    if len(extras) != len(extra_ids):
        field_errors["extras"] = "Unknown extra selected"
    elif ticket_type is not None and extras:
        allowed = set(ticket_type.extras.values_list("pk", flat=True))
        not_allowed = [extra.name for extra in extras if extra.pk not in allowed]
        if not_allowed:
            field_errors["extras"] = f"{', '.join(not_allowed)} not available for {ticket_type.name}"

    if field_errors:
        raise ServiceFieldError(field_errors)
    return jump_type, ticket_type, extras


def _validate_passenger(ticket_type: TicketType, passenger: PassengerFields | None) -> dict:
    field_errors = {}
    if passenger is None:
        if ticket_type.is_tandem:
            field_errors["passenger_name"] = "Passenger details are required for this ticket"
        return field_errors
    if not (passenger.name or "").strip():
        field_errors["passenger_name"] = "Passenger name is required"
    if passenger.exit_weight is None or passenger.exit_weight <= 0:
        field_errors["passenger_exit_weight"] = "Exit weight seems too low?"
    return field_errors


def slot_request(load_id, members, activity, *, group=False, **kwargs) -> dict:
    """The content of a create_slots request that a replayed key must match."""
    return {
        "load_id": str(load_id),
        "members": [
            [str(participant_id), None if passenger is None else [passenger.name, str(passenger.exit_weight)]]
            for participant_id, passenger in members
        ],
        "activity": [
            str(activity.jump_type_id),
            str(activity.ticket_type_id),
            sorted(str(extra_id) for extra_id in activity.extra_ids or ()),
        ],
        "group": bool(group or len(members) > 1),
    }


@idempotent(scope="create_slots", hash_from=slot_request)
@transaction.atomic
def create_slots(
    load_id,
    members: list[tuple[int, PassengerFields | None]],
    activity: ActivityConfig,
    *,
    actor_id,
    idempotency_key: str | None = None,
    group: bool = False,
) -> dict:
    """
    Manifest dropzone users on a load in one transaction.

    Every member shares a new group number when `group` is set or more
    than one member is given. A replayed idempotency key returns the
    original result without creating slots; reusing a completed key for a
    different request raises IdempotencyKeyMismatch.

    Args:
        load_id: Target load
        members: (dropzone_user_id, passenger) pairs, in order
        activity: Shared jump type, ticket type and extras
        actor_id: Dropzone user performing the request
        idempotency_key: Client key identifying this logical request
        group: Assign a group number even to a single member

    Returns:
        {'load_id', 'slot_ids', 'group_number'}

    Raises:
        ServicePermissionDenied: If the actor may not manifest a member
        ServiceFieldError: If any rule fails; no slot is created
    """
    actor = _get_actor(actor_id)
    load = _lock_load(load_id, actor)
    dropzone = load.dropzone

    if not members:
        raise ServiceFieldError(errors=["Select at least one person to manifest"])

    gate = PermissionGate(actor.capabilities)
    member_ids = [participant_id for participant_id, _ in members]
    if len(members) > 1 and not gate.can_form_group(actor.pk, member_ids):
        raise ServicePermissionDenied(Capability.CREATE_USER_SLOT_WITH_SELF)
    for participant_id in member_ids:
        actor_is_target = str(participant_id) == str(actor.pk)
        if not gate.allowed("manifest", actor_is_target):
            raise ServicePermissionDenied(required_capability("manifest", actor_is_target))

    if load.has_landed:
        raise ServiceFieldError({"load": f"Load #{load.load_number} has landed"})
    if not load.is_open and Capability.CREATE_USER_SLOT not in gate:
        raise ServiceFieldError({"load": f"Load #{load.load_number} is not open for manifesting"})

    jump_type, ticket_type, extras = _resolve_activity(dropzone.pk, activity)

    if not ticket_type.allow_manifesting_self and Capability.CREATE_USER_SLOT not in gate:
        raise ServiceFieldError({"ticket_type": f"{ticket_type.name} cannot be manifested by yourself"})

    field_errors = {}
    for _, passenger in members:
        for field, message in _validate_passenger(ticket_type, passenger).items():
            field_errors.setdefault(field, message)
    if field_errors:
        raise ServiceFieldError(field_errors)

    participants = {
        du.pk: du
        for du in DropzoneUser.objects.select_for_update().filter(
            pk__in=set(member_ids),
            dropzone=dropzone,
            deleted_at__isnull=True,
        )
    }
    if len(participants) != len(set(member_ids)):
        raise ServiceFieldError(errors=["Unknown participant for this dropzone"])

    errors = []
    for du in participants.values():
        result = check_eligibility(
            profile_snapshot(du),
            credit_system_enabled=dropzone.credit_system_enabled,
        )
        errors.extend(f"{du.display_name}: {message}" for message in result.messages)
    if errors:
        raise ServiceFieldError(errors=errors)

    # One own slot per participant per load; passenger slots may repeat
    on_load = set(
        load.slots.filter(passenger_name="").values_list("dropzone_user_id", flat=True)
    )
    seen = set()
    for participant_id, passenger in members:
        if passenger is not None:
            continue
        du = participants[participant_id]
        if du.pk in on_load or du.pk in seen:
            raise ServiceFieldError({"load": f"{du.display_name} is already on this load"})
        seen.add(du.pk)

    slot_count = load.slots.count()
    if slot_count + len(members) > load.max_slots:
        available = max(load.max_slots - slot_count, 0)
        raise ServiceFieldError(
            {"load": f"Load #{load.load_number} has {available} slot(s) available, {len(members)} requested"}
        )

    cost = ticket_type.cost + sum((extra.cost for extra in extras), Decimal("0"))
    if dropzone.credit_system_enabled and cost > 0:
        owed = {}
        for participant_id, _ in members:
            owed[participant_id] = owed.get(participant_id, Decimal("0")) + cost
        for participant_id, amount in owed.items():
            du = participants[participant_id]
            if du.credits < amount:
                raise ServiceFieldError(
                    {"credits": f"{du.display_name} has {du.credits} credits, {amount} needed"}
                )

    group_number = None
    if group or len(members) > 1:
        last = load.slots.aggregate(last=Max("group_number"))["last"]
        group_number = (last or 0) + 1

    slot_ids = []
    for participant_id, passenger in members:
        du = participants[participant_id]
        slot = Slot.objects.create(
            load=load,
            dropzone_user=du,
            jump_type=jump_type,
            ticket_type=ticket_type,
            exit_weight=du.exit_weight,
            passenger_name=passenger.name if passenger else "",
            passenger_exit_weight=passenger.exit_weight if passenger else None,
            group_number=group_number,
            cost=cost,
        )
        if extras:
            slot.extras.set(extras)
        slot_ids.append(slot.pk)

        if dropzone.credit_system_enabled and cost > 0:
            du.credits -= cost
            du.save(update_fields=["credits", "updated_at"])
            CreditTransaction.objects.create(
                dropzone_user=du,
                amount=-cost,
                status=CreditTransaction.Status.PAID,
                message=f"{ticket_type.name} on load #{load.load_number}",
                slot_ref=str(slot.pk),
            )

    logger.info(f"Created slots {slot_ids} on load {load.pk} (group {group_number})")
    return {"load_id": load.pk, "slot_ids": slot_ids, "group_number": group_number}


@transaction.atomic
def delete_slot(slot_id, *, actor_id) -> Load:
    """
    Remove a slot, refunding any credits it was charged.

    Returns:
        The slot's load

    Raises:
        ServicePermissionDenied: If the actor may not remove this slot
        ServiceFieldError: If the slot is unknown or the load has landed
    """
    actor = _get_actor(actor_id)
    try:
        slot = Slot.objects.get(pk=slot_id, load__dropzone_id=actor.dropzone_id)
    except Slot.DoesNotExist:
        raise ServiceFieldError(errors=["Slot not found"])

    actor_is_target = slot.dropzone_user_id == actor.pk
    if not PermissionGate(actor.capabilities).allowed("remove_slot", actor_is_target):
        raise ServicePermissionDenied(required_capability("remove_slot", actor_is_target))

    load = _lock_load(slot.load_id, actor)
    if load.has_landed:
        raise ServiceFieldError({"load": f"Load #{load.load_number} has landed"})

    paid = CreditTransaction.objects.filter(
        slot_ref=str(slot.pk),
        status=CreditTransaction.Status.PAID,
        dropzone_user_id=slot.dropzone_user_id,
    ).exists()
    if paid and slot.cost > 0:
        du = DropzoneUser.objects.select_for_update().get(pk=slot.dropzone_user_id)
        du.credits += slot.cost
        du.save(update_fields=["credits", "updated_at"])
        CreditTransaction.objects.create(
            dropzone_user=du,
            amount=slot.cost,
            status=CreditTransaction.Status.REFUNDED,
            message=f"Removed from load #{load.load_number}",
            slot_ref=str(slot.pk),
        )

    slot.delete()
    logger.info(f"Deleted slot {slot_id} from load {load.pk}")
    return load


def _assign_crew(load: Load, seat: str, participant_id) -> None:
    if participant_id is None:
        setattr(load, seat, None)
        return
    try:
        du = DropzoneUser.objects.select_related("role", "user").get(
            pk=participant_id,
            dropzone_id=load.dropzone_id,
            deleted_at__isnull=True,
        )
    except DropzoneUser.DoesNotExist:
        raise ServiceFieldError({seat: "Unknown dropzone user"})
    if CREW_CAPABILITIES[seat] not in du.capabilities:
        raise ServiceFieldError({seat: f"{du.display_name} cannot act as {seat.replace('_', ' ')}"})
    setattr(load, seat, du)


@transaction.atomic
def update_load(load_id, *, actor_id, **changes) -> Load:
    """
    Apply load changes.

    Crew and plane changes apply before the dispatch and landing checks,
    so a load master can be seated and the load landed in one call.

    Raises:
        ServicePermissionDenied: If the actor lacks update_load
        ServiceFieldError: If a change is invalid or the load has landed
    """
    unknown = set(changes) - LOAD_CHANGE_FIELDS
    if unknown:
        raise ServiceFieldError(errors=[f"Unknown load field: {name}" for name in sorted(unknown)])

    actor = _get_actor(actor_id)
    _require(actor, Capability.UPDATE_LOAD)
    load = _lock_load(load_id, actor)
    if load.has_landed:
        raise ServiceFieldError({"load": f"Load #{load.load_number} has landed"})

    for seat in CREW_CAPABILITIES:
        if f"{seat}_id" in changes:
            _assign_crew(load, seat, changes[f"{seat}_id"])

    if "plane_id" in changes:
        try:
            plane = Plane.objects.get(pk=changes["plane_id"], dropzone_id=load.dropzone_id, deleted_at__isnull=True)
        except Plane.DoesNotExist:
            raise ServiceFieldError({"plane": "Plane not found"})
        slot_count = load.slots.count()
        if slot_count > plane.max_slots:
            raise ServiceFieldError({"plane": str(PlaneTooSmall(slot_count - plane.max_slots))})
        load.plane = plane
        load.max_slots = plane.max_slots

    if "is_open" in changes:
        load.is_open = bool(changes["is_open"])

    now = timezone.now()
    try:
        if "dispatch_at" in changes:
            dispatch_at = changes["dispatch_at"]
            if dispatch_at is None:
                lifecycle.cancel_call(load, now)
            else:
                if lifecycle.LoadState.COUNTDOWN_ACTIVE not in lifecycle.get_allowed_transitions(load, now):
                    raise InvalidTransition(
                        lifecycle.get_load_state(load, now),
                        lifecycle.LoadState.COUNTDOWN_ACTIVE,
                        "A call is already scheduled for this load",
                    )
                if dispatch_at <= now:
                    raise InvalidTransition(
                        lifecycle.LoadState.OPEN,
                        lifecycle.LoadState.COUNTDOWN_ACTIVE,
                        "Dispatch time must be in the future",
                    )
            load.dispatch_at = dispatch_at

        if changes.get("has_landed"):
            lifecycle.mark_landed(load, now)
            load.has_landed = True
    except MissingCrew as e:
        raise ServiceFieldError({"load_master": e.reason})
    except MissingPilot as e:
        raise ServiceFieldError({"pilot": e.reason})
    except (InvalidTransition, LoadClosed) as e:
        raise ServiceFieldError({"load": e.reason})

    load.save()
    logger.info(f"Updated load {load.pk}: {', '.join(sorted(changes))}")
    return load
