"""Load administration: dispatch calls, landing, crew and load creation.

Each operation checks the gate and the lifecycle locally, then sends the
resulting changes to the backend and reconciles from its answer.
"""

import logging
from datetime import datetime

from . import lifecycle
from .exceptions import Forbidden
from .permissions import CREW_CAPABILITIES
from .snapshots import LoadSnapshot, PlaneSnapshot, RoleHolder

logger = logging.getLogger(__name__)


class LoadDispatcher:
    """Drives one context's loads through their lifecycle."""

    def __init__(self, context):
        self.context = context

    def _require(self, action: str) -> None:
        if not self.context.gate().allowed(action):
            raise Forbidden(f"You do not have permission to {action.replace('_', ' ')}")

    def _update(self, load: LoadSnapshot, changes: dict) -> LoadSnapshot:
        return self.context.run_mutation(
            load,
            self.context.backend.update_load,
            load.id,
            actor_id=self.context.actor_id,
            **changes,
        )

    def schedule_call(self, load: LoadSnapshot, minutes: int, now: datetime | None = None) -> LoadSnapshot:
        """
        Start the dispatch countdown.

        Raises:
            Forbidden: If the actor may not update loads
            LoadClosed: If the load has landed
            InvalidTransition: If a call is running or the offset is unsupported
        """
        self._require("update_load")
        changes = lifecycle.schedule_call(load, minutes, now)
        updated = self._update(load, changes)
        logger.info(f"Load {load.id} called for {minutes} minutes")
        return updated

    def cancel_call(self, load: LoadSnapshot, now: datetime | None = None) -> LoadSnapshot:
        self._require("update_load")
        changes = lifecycle.cancel_call(load, now)
        updated = self._update(load, changes)
        logger.info(f"Load {load.id} call cancelled")
        return updated

    def mark_landed(self, load: LoadSnapshot, now: datetime | None = None) -> LoadSnapshot:
        """
        Land a load. Landed is terminal.

        Raises:
            Forbidden: If the actor may not update loads
            MissingCrew: If no load master is assigned
            MissingPilot: If no pilot is assigned
            InvalidTransition: If dispatch is not due yet
        """
        self._require("update_load")
        changes = lifecycle.mark_landed(load, now)
        updated = self._update(load, changes)
        logger.info(f"Load {load.id} landed")
        return updated

    def assign_crew(
        self,
        load: LoadSnapshot,
        seat: str,
        holder: RoleHolder | None,
        now: datetime | None = None,
    ) -> LoadSnapshot:
        """
        Seat a dropzone user as pilot, GCA or load master (None clears the seat).

        Whether the holder's role qualifies for the seat is decided by the
        backend, which reports a field error on the seat.
        """
        if seat not in CREW_CAPABILITIES:
            raise ValueError(f"Unknown crew seat: {seat}")
        self._require("update_load")
        lifecycle.ensure_not_landed(load, now)
        return self._update(load, {f"{seat}_id": holder.id if holder else None})

    def set_open(self, load: LoadSnapshot, is_open: bool, now: datetime | None = None) -> LoadSnapshot:
        """Open or close a load to self-manifesting."""
        self._require("update_load")
        lifecycle.ensure_not_landed(load, now)
        return self._update(load, {"is_open": is_open})

    def create_load(
        self,
        plane: PlaneSnapshot | None = None,
        name: str = "",
        max_slots: int | None = None,
        is_open: bool = True,
    ) -> LoadSnapshot:
        """Create a load for today; max_slots defaults to the plane's capacity."""
        self._require("create_load")
        load = self.context.run_mutation(
            None,
            self.context.backend.create_load,
            self.context.dropzone_id,
            actor_id=self.context.actor_id,
            plane_id=plane.id if plane else None,
            name=name,
            max_slots=max_slots,
            is_open=is_open,
        )
        logger.info(f"Created load #{load.load_number} for dropzone {self.context.dropzone_id}")
        return load
