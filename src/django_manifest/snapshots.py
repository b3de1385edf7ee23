"""In-memory snapshots of backend records.

The client core never reads the database. It works on these snapshots,
which a backend builds from its authoritative records and which are
replaced wholesale whenever the backend answers a request.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime
from decimal import Decimal


@dataclass(frozen=True)
class ActivityConfig:
    """Jump configuration shared by every slot of one manifest request."""

    jump_type_id: int | None = None
    ticket_type_id: int | None = None
    extra_ids: tuple[int, ...] = ()


@dataclass(frozen=True)
class PassengerFields:
    """Tandem/guest details for a slot booked on someone's behalf."""

    name: str
    exit_weight: Decimal | None = None


@dataclass(frozen=True)
class PlaneSnapshot:
    id: int
    name: str
    max_slots: int


@dataclass(frozen=True)
class RoleHolder:
    """A dropzone user seated in a crew role (pilot, GCA, load master)."""

    id: int
    name: str = ""


@dataclass(frozen=True)
class SlotSnapshot:
    id: int
    participant_id: int
    participant_name: str = ""
    activity: ActivityConfig = field(default_factory=ActivityConfig)
    passenger: PassengerFields | None = None
    group_number: int | None = None
    exit_weight: Decimal | None = None
    cost: Decimal = Decimal("0")


@dataclass
class LoadSnapshot:
    """A load as last reported by the backend.

    Mutable so that every holder of a reference sees the reconciled
    state after `update_from`.
    """

    id: int
    name: str = ""
    load_number: int = 0
    max_slots: int = 0
    plane: PlaneSnapshot | None = None
    pilot: RoleHolder | None = None
    gca: RoleHolder | None = None
    load_master: RoleHolder | None = None
    dispatch_at: datetime | None = None
    has_landed: bool = False
    is_open: bool = True
    slots: list[SlotSnapshot] = field(default_factory=list)

    @property
    def slot_count(self) -> int:
        return len(self.slots)

    @property
    def available_slots(self) -> int:
        return max(self.max_slots - self.slot_count, 0)

    @property
    def is_full(self) -> bool:
        return self.slot_count >= self.max_slots

    def get_slot(self, slot_id) -> SlotSnapshot | None:
        for slot in self.slots:
            if slot.id == slot_id:
                return slot
        return None

    def group(self, group_number: int) -> list[SlotSnapshot]:
        """Slots created together under one group number."""
        return [s for s in self.slots if group_number is not None and s.group_number == group_number]

    def update_from(self, other: "LoadSnapshot") -> "LoadSnapshot":
        """Overwrite this snapshot with the authoritative one."""
        for f in fields(self):
            value = getattr(other, f.name)
            setattr(self, f.name, list(value) if f.name == "slots" else value)
        return self


@dataclass(frozen=True)
class ParticipantProfile:
    """Eligibility snapshot of one dropzone user.

    Attributes:
        participant_id: Dropzone user id
        license_id: License reference (None if not selected)
        membership_expires_at: When the dropzone membership lapses
        exit_weight: Exit weight, None if never set
        has_rig: Whether equipment has been set up
        rig_inspected: Whether the rig passed inspection at this dropzone
        reserve_repack_expires_at: When the reserve repack lapses
        credits: Account credit balance
    """

    participant_id: int
    name: str = ""
    license_id: int | None = None
    membership_expires_at: datetime | None = None
    exit_weight: Decimal | None = None
    has_rig: bool = False
    rig_inspected: bool = False
    reserve_repack_expires_at: datetime | None = None
    credits: Decimal = Decimal("0")


@dataclass(frozen=True)
class LoadView:
    """Read-only view of a load for list rendering."""

    id: int
    name: str
    load_number: int
    slot_count: int
    max_slots: int
    available_slots: int
    is_full: bool
    is_open: bool
    has_landed: bool
    state: str
    countdown_remaining: int | None
    plane_name: str = ""
