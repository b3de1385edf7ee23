"""Pytest configuration for django-manifest tests."""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from django_manifest.context import ManifestContext
from django_manifest.models import (
    Dropzone,
    DropzoneRole,
    DropzoneUser,
    Extra,
    JumpType,
    Plane,
    TicketType,
)
from django_manifest.permissions import Capability
from django_manifest.snapshots import LoadSnapshot, ParticipantProfile
from tests.testapp.backends import InMemoryBackend

ACTOR_ID = 7
OTHER_ID = 8
THIRD_ID = 9

MANIFEST_ALL = [
    Capability.CREATE_SLOT,
    Capability.CREATE_USER_SLOT,
    Capability.CREATE_USER_SLOT_WITH_SELF,
    Capability.DELETE_SLOT,
    Capability.DELETE_USER_SLOT,
    Capability.UPDATE_LOAD,
    Capability.CREATE_LOAD,
]


def eligible_profile(participant_id, **overrides) -> ParticipantProfile:
    """A profile that passes every eligibility requirement."""
    now = timezone.now()
    values = dict(
        participant_id=participant_id,
        name=f"User {participant_id}",
        license_id=1,
        membership_expires_at=now + timedelta(days=365),
        exit_weight=Decimal("80"),
        has_rig=True,
        rig_inspected=True,
        reserve_repack_expires_at=now + timedelta(days=100),
        credits=Decimal("100"),
    )
    values.update(overrides)
    return ParticipantProfile(**values)


# =============================================================================
# Client core fixtures (no database)
# =============================================================================


@pytest.fixture
def backend():
    """In-memory backend with three eligible members and one open load."""
    backend = InMemoryBackend()
    for participant_id in (ACTOR_ID, OTHER_ID, THIRD_ID):
        backend.add_profile(eligible_profile(participant_id))
    backend.grant(ACTOR_ID, *MANIFEST_ALL)
    backend.add_load(LoadSnapshot(id=1, name="Morning", load_number=1, max_slots=4))
    return backend


@pytest.fixture
def context(backend):
    """An open manifest context acting as ACTOR_ID."""
    context = ManifestContext.open(backend, dropzone_id=1, actor_id=ACTOR_ID)
    yield context
    if not context.is_closed:
        context.close()


@pytest.fixture
def load(context):
    """The context's copy of load 1."""
    return context.get_load(1)


# =============================================================================
# Reference backend fixtures (database)
# =============================================================================


@pytest.fixture
def dropzone(db):
    return Dropzone.objects.create(name="Skydive Test", credit_system_enabled=True)


@pytest.fixture
def plane(dropzone):
    return Plane.objects.create(dropzone=dropzone, name="Caravan", registration="LN-ABC", max_slots=4)


@pytest.fixture
def small_plane(dropzone):
    return Plane.objects.create(dropzone=dropzone, name="Cessna", max_slots=2)


@pytest.fixture
def jump_type(db):
    return JumpType.objects.create(name="Fun jump", slug="fun")


@pytest.fixture
def ticket_type(dropzone):
    return TicketType.objects.create(dropzone=dropzone, name="Full altitude", cost=Decimal("30"), altitude=14000)


@pytest.fixture
def tandem_ticket(dropzone):
    return TicketType.objects.create(dropzone=dropzone, name="Tandem", cost=Decimal("0"), is_tandem=True)


@pytest.fixture
def video(dropzone, ticket_type):
    extra = Extra.objects.create(dropzone=dropzone, name="Video", cost=Decimal("10"))
    extra.ticket_types.add(ticket_type)
    return extra


@pytest.fixture
def manifest_role(dropzone):
    return DropzoneRole.objects.create(
        dropzone=dropzone,
        name="manifest",
        capabilities=[str(c) for c in MANIFEST_ALL] + [
            str(Capability.ACT_AS_LOAD_MASTER),
        ],
    )


@pytest.fixture
def fun_jumper_role(dropzone):
    return DropzoneRole.objects.create(
        dropzone=dropzone,
        name="fun jumper",
        capabilities=[str(Capability.CREATE_SLOT), str(Capability.DELETE_SLOT)],
    )


@pytest.fixture
def pilot_role(dropzone):
    return DropzoneRole.objects.create(
        dropzone=dropzone,
        name="pilot",
        capabilities=[str(Capability.ACT_AS_PILOT)],
    )


def make_member(dropzone, user, role, **overrides):
    now = timezone.now()
    values = dict(
        dropzone=dropzone,
        user=user,
        role=role,
        credits=Decimal("100"),
        expires_at=now + timedelta(days=365),
        exit_weight=Decimal("80"),
        license_id=1,
        has_rig=True,
        rig_inspected=True,
        reserve_repack_expires_at=now + timedelta(days=100),
    )
    values.update(overrides)
    return DropzoneUser.objects.create(**values)


@pytest.fixture
def manifester(dropzone, manifest_role, django_user_model):
    """Dropzone staff allowed to manifest anyone and run loads."""
    user = django_user_model.objects.create_user(username="manifest", password="test")
    return make_member(dropzone, user, manifest_role)


@pytest.fixture
def jumper(dropzone, fun_jumper_role, django_user_model):
    """Fun jumper allowed to manifest only themself."""
    user = django_user_model.objects.create_user(username="jumper", password="test")
    return make_member(dropzone, user, fun_jumper_role)


@pytest.fixture
def other_jumper(dropzone, fun_jumper_role, django_user_model):
    user = django_user_model.objects.create_user(username="other", password="test")
    return make_member(dropzone, user, fun_jumper_role)


@pytest.fixture
def pilot(dropzone, pilot_role, django_user_model):
    user = django_user_model.objects.create_user(username="pilot", password="test")
    return make_member(dropzone, user, pilot_role)
