"""Reference backend running the manifest services in-process."""

import functools
import logging
from datetime import datetime

from django.db import DatabaseError

from .. import selectors, services
from ..exceptions import (
    CollaboratorFieldError,
    Forbidden,
    ServiceFieldError,
    ServicePermissionDenied,
    TransportFailure,
)
from ..models import DropzoneUser, Load
from ..snapshots import ActivityConfig, LoadSnapshot, ParticipantProfile, PassengerFields
from .base import ManifestBackend

logger = logging.getLogger(__name__)


def _translate_errors(method):
    """Report service failures the way every backend reports them."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except ServiceFieldError as e:
            raise CollaboratorFieldError(e.field_errors, e.errors) from e
        except ServicePermissionDenied as e:
            raise Forbidden(f"You do not have permission to do this ({e.capability})") from e
        except Load.DoesNotExist as e:
            raise CollaboratorFieldError({"load": "Load not found"}) from e
        except DropzoneUser.DoesNotExist as e:
            raise CollaboratorFieldError(errors=["Not a member of this dropzone"]) from e
        except DatabaseError as e:
            logger.exception(f"Database error in {method.__name__}")
            raise TransportFailure(
                reason=f"Could not reach the manifest store: {e}",
                idempotency_key=kwargs.get("idempotency_key"),
            ) from e

    return wrapper


class DjangoBackend(ManifestBackend):
    """ManifestBackend over the ORM services and selectors.

    Usage:
        context = ManifestContext.open(DjangoBackend(), dropzone_id=dz.pk,
                                       actor_id=member.pk)
    """

    @_translate_errors
    def fetch_loads(self, dropzone_id, since: datetime) -> list[LoadSnapshot]:
        return selectors.list_loads(dropzone_id, since)

    @_translate_errors
    def fetch_load(self, load_id) -> LoadSnapshot:
        return selectors.get_load(load_id)

    @_translate_errors
    def fetch_capabilities(self, dropzone_id, participant_id) -> frozenset[str]:
        return selectors.get_capabilities(dropzone_id, participant_id)

    @_translate_errors
    def fetch_profile(self, dropzone_id, participant_id) -> ParticipantProfile:
        return selectors.get_profile(dropzone_id, participant_id)

    @_translate_errors
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
        load = services.create_load(
            dropzone_id,
            actor_id=actor_id,
            plane_id=plane_id,
            name=name,
            max_slots=max_slots,
            is_open=is_open,
        )
        return selectors.get_load(load.pk)

    @_translate_errors
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
        result = services.create_slots(
            load_id,
            list(members),
            activity,
            actor_id=actor_id,
            idempotency_key=idempotency_key,
            group=group,
        )
        return selectors.get_load(result["load_id"])

    @_translate_errors
    def delete_slot(self, slot_id, *, actor_id) -> LoadSnapshot:
        load = services.delete_slot(slot_id, actor_id=actor_id)
        return selectors.get_load(load.pk)

    @_translate_errors
    def update_load(self, load_id, *, actor_id, **changes) -> LoadSnapshot:
        load = services.update_load(load_id, actor_id=actor_id, **changes)
        return selectors.get_load(load.pk)
