"""
Capability-based permission gate.

A dropzone user holds exactly one role per dropzone, and a role is a named
set of capability grants. Every mutating entry point asks the same gate,
which answers from one lookup table:

| Action | Acting on self | Acting on others |
|--------|----------------|------------------|
| manifest | create_slot | create_user_slot |
| edit_slot | update_slot | update_user_slot |
| remove_slot | delete_slot | delete_user_slot |
| update_load | update_load | update_load |
| create_load | create_load | create_load |

Denial is silent here (the gate returns False). Callers decide whether to
raise Forbidden or hide the affordance.
"""

from typing import Iterable

from django.db import models


class Capability(models.TextChoices):
    CREATE_SLOT = "create_slot", "Manifest self"
    CREATE_USER_SLOT = "create_user_slot", "Manifest others"
    CREATE_USER_SLOT_WITH_SELF = "create_user_slot_with_self", "Manifest groups with self"
    UPDATE_SLOT = "update_slot", "Edit own slot"
    UPDATE_USER_SLOT = "update_user_slot", "Edit others' slots"
    DELETE_SLOT = "delete_slot", "Remove own slot"
    DELETE_USER_SLOT = "delete_user_slot", "Remove others' slots"
    CREATE_LOAD = "create_load", "Create loads"
    UPDATE_LOAD = "update_load", "Update loads"
    ACT_AS_PILOT = "act_as_pilot", "Act as pilot"
    ACT_AS_GCA = "act_as_gca", "Act as GCA"
    ACT_AS_LOAD_MASTER = "act_as_load_master", "Act as load master"
    UPDATE_PERMISSION = "update_permission", "Change user roles"


ACTION_CAPABILITIES: dict[str, tuple[str, str]] = {
    "manifest": (Capability.CREATE_SLOT, Capability.CREATE_USER_SLOT),
    "edit_slot": (Capability.UPDATE_SLOT, Capability.UPDATE_USER_SLOT),
    "remove_slot": (Capability.DELETE_SLOT, Capability.DELETE_USER_SLOT),
    "update_load": (Capability.UPDATE_LOAD, Capability.UPDATE_LOAD),
    "create_load": (Capability.CREATE_LOAD, Capability.CREATE_LOAD),
}

# Crew seat -> capability the seated dropzone user must hold
CREW_CAPABILITIES: dict[str, str] = {
    "pilot": Capability.ACT_AS_PILOT,
    "gca": Capability.ACT_AS_GCA,
    "load_master": Capability.ACT_AS_LOAD_MASTER,
}


def required_capability(action: str, actor_is_target: bool = True) -> str:
    """Capability needed to perform `action` on self or on someone else.

    Unknown actions are treated as raw capability names.
    """
    pair = ACTION_CAPABILITIES.get(action)
    if pair is None:
        return action
    own, others = pair
    return str(own if actor_is_target else others)


class PermissionGate:
    """Answers capability questions for one actor from one role snapshot.

    Build a new gate whenever the role snapshot is refreshed; a gate never
    outlives the snapshot it was built from.

    Examples:
        gate = PermissionGate({"create_slot", "delete_slot"})
        gate.allowed("manifest")                         # True
        gate.allowed("manifest", actor_is_target=False)  # False
    """

    def __init__(self, capabilities: Iterable[str] = ()):
        self.capabilities = frozenset(str(c) for c in capabilities)

    def __contains__(self, capability) -> bool:
        return str(capability) in self.capabilities

    def allowed(self, capability: str, actor_is_target: bool = True) -> bool:
        """Check a table action (e.g. 'manifest') or a raw capability name."""
        return required_capability(str(capability), actor_is_target) in self.capabilities

    def can_form_group(self, actor_id, member_ids: Iterable) -> bool:
        """Check whether the actor may submit a group with these members.

        Full group rights allow any members. The self-only grant allows a
        group made of the actor plus dependents booked on the actor's own
        account (tandem passengers), so every member must be the actor.
        """
        member_ids = list(member_ids)
        if not member_ids:
            return False
        if Capability.CREATE_USER_SLOT in self:
            return True
        if Capability.CREATE_USER_SLOT_WITH_SELF in self:
            return all(member_id == actor_id for member_id in member_ids)
        return False

    def can_crew(self, seat: str) -> bool:
        """Check whether this role qualifies its holder for a crew seat."""
        return CREW_CAPABILITIES[seat] in self
