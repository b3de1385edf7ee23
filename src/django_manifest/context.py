"""Manifest session context.

One ManifestContext exists per (dropzone, actor) selection. It owns the
single current load list, refreshes it by polling, and is passed to every
client component. Switching dropzone or logging out closes it, dropping
every snapshot it holds.

Role capabilities are fetched fresh for each decision and are never kept
between two operations.
"""

import logging
from datetime import datetime, timedelta

from django.utils import timezone

from .backends.base import ManifestBackend
from .conf import get_poll_interval
from .eligibility import EligibilityResult, check_eligibility
from .exceptions import CollaboratorFieldError, Forbidden, ManifestError, TransportFailure
from .lifecycle import accepts_allocation, countdown_remaining, get_load_state
from .permissions import Capability, PermissionGate
from .snapshots import LoadSnapshot, LoadView, ParticipantProfile

logger = logging.getLogger(__name__)


class ContextClosed(ManifestError):
    """Raised when using a context after logout or dropzone switch."""

    def __init__(self):
        super().__init__("Manifest context has been closed")


class ManifestCheck:
    """Answer to "may this participant manifest on this load right now?".

    Used for affordance gating; `reasons` are user-facing messages.
    """

    def __init__(self, allowed: bool, reasons: list[str] = None):
        self.allowed = allowed
        self.reasons = list(reasons or [])

    def __bool__(self):
        return self.allowed

    def __repr__(self):
        return f"ManifestCheck(allowed={self.allowed!r}, reasons={self.reasons!r})"


class ManifestContext:
    """Explicitly-scoped manifest session.

    Usage:
        context = ManifestContext.open(backend, dropzone_id=1, actor_id=7,
                                       credit_system_enabled=True)
        load = context.loads[0]
        context.allocator().allocate(load, 7, ActivityConfig(1, 2))
        context.close()
    """

    def __init__(
        self,
        backend: ManifestBackend,
        dropzone_id,
        actor_id,
        *,
        credit_system_enabled: bool = False,
        poll_interval: int | None = None,
    ):
        self.backend = backend
        self.dropzone_id = dropzone_id
        self.actor_id = actor_id
        self.credit_system_enabled = credit_system_enabled
        self.poll_interval = poll_interval if poll_interval is not None else get_poll_interval()
        self.last_refreshed_at: datetime | None = None
        self._loads: dict = {}
        self._closed = False

    @classmethod
    def open(cls, backend: ManifestBackend, dropzone_id, actor_id, **kwargs) -> "ManifestContext":
        """Create a context for a dropzone selection and load today's loads."""
        context = cls(backend, dropzone_id, actor_id, **kwargs)
        context.refresh()
        logger.info(f"Opened manifest context for dropzone {dropzone_id} as {actor_id}")
        return context

    def close(self) -> None:
        """Tear down on logout or dropzone switch."""
        self._loads = {}
        self.last_refreshed_at = None
        self._closed = True
        logger.info(f"Closed manifest context for dropzone {self.dropzone_id}")

    @property
    def is_closed(self) -> bool:
        return self._closed

    def _ensure_open(self):
        if self._closed:
            raise ContextClosed()

    # ------------------------------------------------------------------
    # Snapshot store
    # ------------------------------------------------------------------

    @property
    def loads(self) -> list[LoadSnapshot]:
        """Current load list, newest load number first."""
        self._ensure_open()
        return sorted(self._loads.values(), key=lambda l: l.load_number, reverse=True)

    def get_load(self, load_id) -> LoadSnapshot | None:
        self._ensure_open()
        return self._loads.get(load_id)

    def refresh(self, now: datetime | None = None) -> list[LoadSnapshot]:
        """Refetch today's loads, replacing the whole list."""
        self._ensure_open()
        if now is None:
            now = timezone.now()
        start_of_day = timezone.localtime(now).replace(hour=0, minute=0, second=0, microsecond=0)
        fetched = self.backend.fetch_loads(self.dropzone_id, since=start_of_day)

        loads = {}
        for snapshot in fetched:
            existing = self._loads.get(snapshot.id)
            loads[snapshot.id] = existing.update_from(snapshot) if existing else snapshot
        self._loads = loads
        self.last_refreshed_at = now
        return self.loads

    def poll(self, now: datetime | None = None) -> bool:
        """Refresh if the poll interval has elapsed. Returns True if refreshed."""
        self._ensure_open()
        if now is None:
            now = timezone.now()
        due = (
            self.last_refreshed_at is None
            or now - self.last_refreshed_at >= timedelta(seconds=self.poll_interval)
        )
        if due:
            self.refresh(now)
        return due

    def reload(self, load_id) -> LoadSnapshot:
        """Refetch one load from the backend."""
        self._ensure_open()
        return self.reconcile(self.backend.fetch_load(load_id))

    def reconcile(self, authoritative: LoadSnapshot) -> LoadSnapshot:
        """Make the stored snapshot match the backend's answer."""
        self._ensure_open()
        existing = self._loads.get(authoritative.id)
        if existing is None:
            self._loads[authoritative.id] = authoritative
            return authoritative
        return existing.update_from(authoritative)

    def run_mutation(self, load: LoadSnapshot | None, operation, *args, **kwargs) -> LoadSnapshot:
        """
        Issue one backend mutation and reconcile from its answer.

        When the backend rejects the request the load is refetched so the
        snapshot reflects the authority before the error propagates.
        """
        self._ensure_open()
        try:
            authoritative = operation(*args, **kwargs)
        except (CollaboratorFieldError, Forbidden) as e:
            logger.warning(f"Backend rejected {operation.__name__}: {e}")
            if load is not None:
                try:
                    self._sync(load, self.backend.fetch_load(load.id))
                except TransportFailure:
                    logger.warning(f"Could not refetch load {load.id} after rejection")
            raise
        except TransportFailure:
            logger.warning(f"Backend unreachable during {operation.__name__}")
            raise
        return self._sync(load, authoritative)

    def _sync(self, load: LoadSnapshot | None, authoritative: LoadSnapshot) -> LoadSnapshot:
        stored = self.reconcile(authoritative)
        if load is not None and load is not stored:
            load.update_from(authoritative)
        return stored

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def gate(self) -> PermissionGate:
        """A gate built from the actor's current role, for one decision."""
        self._ensure_open()
        return PermissionGate(self.backend.fetch_capabilities(self.dropzone_id, self.actor_id))

    def profile(self, participant_id=None) -> ParticipantProfile:
        """Fresh eligibility snapshot (defaults to the actor)."""
        self._ensure_open()
        if participant_id is None:
            participant_id = self.actor_id
        return self.backend.fetch_profile(self.dropzone_id, participant_id)

    def eligibility(self, participant_id=None, now: datetime | None = None) -> EligibilityResult:
        return check_eligibility(
            self.profile(participant_id),
            credit_system_enabled=self.credit_system_enabled,
            as_of=now,
        )

    def manifest_check(self, load: LoadSnapshot, now: datetime | None = None) -> ManifestCheck:
        """Whether the actor may manifest themself on `load` right now."""
        gate = self.gate()
        if not gate.allowed("manifest"):
            return ManifestCheck(False, ["You do not have permission to manifest"])
        if not accepts_allocation(load, now):
            return ManifestCheck(False, [f"Load #{load.load_number} has landed"])
        if not load.is_open and Capability.CREATE_USER_SLOT not in gate:
            return ManifestCheck(False, [f"Load #{load.load_number} is not open for manifesting"])
        if load.is_full:
            return ManifestCheck(False, [f"Load #{load.load_number} is full"])
        result = self.eligibility(now=now)
        return ManifestCheck(result.allowed, result.messages)

    def views(self, now: datetime | None = None) -> list[LoadView]:
        """Read-only views of the current load list."""
        if now is None:
            now = timezone.now()
        return [
            LoadView(
                id=load.id,
                name=load.name,
                load_number=load.load_number,
                slot_count=load.slot_count,
                max_slots=load.max_slots,
                available_slots=load.available_slots,
                is_full=load.is_full,
                is_open=load.is_open,
                has_landed=load.has_landed,
                state=str(get_load_state(load, now)),
                countdown_remaining=countdown_remaining(load, now),
                plane_name=load.plane.name if load.plane else "",
            )
            for load in self.loads
        ]

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    def allocator(self):
        from .allocator import SlotAllocator
        return SlotAllocator(self)

    def dispatcher(self):
        from .dispatch import LoadDispatcher
        return LoadDispatcher(self)

    def group(self, load: LoadSnapshot):
        """Start a group manifest on `load`.

        Actors who may only form groups with themselves start with
        themselves already selected.
        """
        from .group import ManifestGroupTransaction

        transaction = ManifestGroupTransaction(self, load)
        gate = self.gate()
        if (
            Capability.CREATE_USER_SLOT_WITH_SELF in gate
            and Capability.CREATE_USER_SLOT not in gate
        ):
            transaction.add_member(self.actor_id)
        return transaction
