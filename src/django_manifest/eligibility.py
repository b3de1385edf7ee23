"""Eligibility checks for manifesting on a load.

Evaluates a participant's profile snapshot against the dropzone's manifest
requirements. Pure functions: no queries, no caching. Callers re-run the
check on every manifest attempt because the profile can change between
refreshes (e.g. after the participant edits their exit weight).

Requirements are evaluated in a fixed precedence so the first reason is
always the most fundamental blocker:

1. Profile incomplete (exit weight and/or equipment missing)
2. Membership not current (expired or never set)
3. Rig inspection required at this dropzone
4. Reserve repack due
5. Insufficient credits (only when the credit system is enabled)
"""

from dataclasses import dataclass, field
from datetime import datetime

from django.db import models
from django.utils import timezone

from .snapshots import ParticipantProfile


class Requirement(models.TextChoices):
    PROFILE_INCOMPLETE = "profile_incomplete", "Profile incomplete"
    MEMBERSHIP_EXPIRED = "membership_expired", "Membership not current"
    INSPECTION_REQUIRED = "inspection_required", "Rig inspection required"
    RESERVE_REPACK_DUE = "reserve_repack_due", "Reserve repack due"
    INSUFFICIENT_CREDITS = "insufficient_credits", "Insufficient credits"


@dataclass(frozen=True)
class EligibilityResult:
    """Result of an eligibility check.

    Attributes:
        allowed: True if the participant may manifest
        reasons: Unmet Requirement codes, most fundamental first
        messages: One user-facing message per reason
        required_actions: What the participant can do to become eligible
    """

    allowed: bool
    reasons: list[str] = field(default_factory=list)
    messages: list[str] = field(default_factory=list)
    required_actions: list[str] = field(default_factory=list)

    @property
    def first_reason(self) -> str | None:
        return self.reasons[0] if self.reasons else None


def _is_past(moment: datetime | None, as_of: datetime) -> bool:
    return moment is not None and moment <= as_of


def check_eligibility(
    profile: ParticipantProfile,
    *,
    credit_system_enabled: bool = False,
    as_of: datetime | None = None,
) -> EligibilityResult:
    """Check if a participant may be allocated a slot.

    Args:
        profile: The participant's eligibility snapshot
        credit_system_enabled: Whether the dropzone charges credits per slot
        as_of: Point in time to evaluate (defaults to now)

    Returns:
        EligibilityResult listing every unmet requirement in precedence order
    """
    if as_of is None:
        as_of = timezone.now()

    reasons: list[str] = []
    messages: list[str] = []
    required_actions: list[str] = []

    # Check 1: exit weight and equipment are both reported by one reason
    missing = []
    if not profile.exit_weight:
        missing.append("exit weight")
        required_actions.append("Set your exit weight")
    if not profile.has_rig:
        missing.append("equipment")
        required_actions.append("Add your equipment")
    if missing:
        reasons.append(Requirement.PROFILE_INCOMPLETE)
        messages.append(f"You need to define {' and '.join(missing)} in your profile")

    # Check 2: a missing expiry counts as lapsed
    if profile.membership_expires_at is None or _is_past(profile.membership_expires_at, as_of):
        reasons.append(Requirement.MEMBERSHIP_EXPIRED)
        messages.append("Your membership seems to be out of date")
        required_actions.append("Renew your membership")

    # Check 3
    if not profile.rig_inspected:
        reasons.append(Requirement.INSPECTION_REQUIRED)
        messages.append("Your rig must be inspected before you can manifest at this dropzone")
        required_actions.append("Have your rig inspected")

    # Check 4
    if _is_past(profile.reserve_repack_expires_at, as_of):
        reasons.append(Requirement.RESERVE_REPACK_DUE)
        messages.append("Your reserve repack is due. You cannot manifest if your repack is out of date.")
        required_actions.append("Get your reserve repacked")

    # Check 5
    if credit_system_enabled and (profile.credits or 0) <= 0:
        reasons.append(Requirement.INSUFFICIENT_CREDITS)
        messages.append("You'll need to top up on credits before you can manifest")
        required_actions.append("Top up your credits")

    return EligibilityResult(
        allowed=not reasons,
        reasons=[str(r) for r in reasons],
        messages=messages,
        required_actions=required_actions,
    )


def unmet_requirements(
    profile: ParticipantProfile,
    *,
    credit_system_enabled: bool = False,
    as_of: datetime | None = None,
) -> list[str]:
    """Ordered Requirement codes the participant does not meet."""
    return check_eligibility(
        profile,
        credit_system_enabled=credit_system_enabled,
        as_of=as_of,
    ).reasons
