"""Models for django-manifest.

Provides the authoritative store behind DjangoBackend:
- Dropzone, Plane, JumpType, TicketType, Extra: dropzone configuration
- DropzoneRole, DropzoneUser: per-dropzone membership and capability grants
- Load, Slot: the day's flights and their seats
- CreditTransaction: credit debits and refunds for slots
- IdempotencyKey: replay protection for slot creation
"""

from decimal import Decimal

from django.conf import settings
from django.db import models
from django.utils import timezone


class ManifestBaseModel(models.Model):
    """Base model with timestamps and soft delete."""

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    deleted_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        abstract = True

    def soft_delete(self):
        """Mark as deleted without removing from database."""
        self.deleted_at = timezone.now()
        self.save(update_fields=["deleted_at", "updated_at"])

    def restore(self):
        """Restore a soft-deleted record."""
        self.deleted_at = None
        self.save(update_fields=["deleted_at", "updated_at"])

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class Dropzone(ManifestBaseModel):
    """The operational context. Roles, credits and loads are per dropzone."""

    name = models.CharField(max_length=200)
    is_public = models.BooleanField(default=True)
    credit_system_enabled = models.BooleanField(
        default=False,
        help_text="Charge slot costs against dropzone user credits"
    )

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name


class Plane(ManifestBaseModel):
    dropzone = models.ForeignKey(Dropzone, on_delete=models.CASCADE, related_name="planes")
    name = models.CharField(max_length=100)
    registration = models.CharField(max_length=50, blank=True)
    min_slots = models.PositiveIntegerField(default=0)
    max_slots = models.PositiveIntegerField(help_text="Seats available for slots")

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return f"{self.name} ({self.max_slots})"


class JumpType(ManifestBaseModel):
    """Kind of jump (e.g. 'fun', 'tandem', 'aff'). Global across dropzones."""

    name = models.CharField(max_length=100)
    slug = models.SlugField(max_length=100, unique=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name


class TicketType(ManifestBaseModel):
    dropzone = models.ForeignKey(Dropzone, on_delete=models.CASCADE, related_name="ticket_types")
    name = models.CharField(max_length=100)
    cost = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0"))
    altitude = models.PositiveIntegerField(null=True, blank=True)
    is_tandem = models.BooleanField(
        default=False,
        help_text="Slots with this ticket carry passenger details"
    )
    allow_manifesting_self = models.BooleanField(default=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name


class Extra(ManifestBaseModel):
    """Add-on (video, camera, ...) allowed for some ticket types."""

    dropzone = models.ForeignKey(Dropzone, on_delete=models.CASCADE, related_name="extras")
    name = models.CharField(max_length=100)
    cost = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0"))
    ticket_types = models.ManyToManyField(TicketType, blank=True, related_name="extras")

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name


class DropzoneRole(ManifestBaseModel):
    """Named set of capability grants (see permissions.Capability)."""

    dropzone = models.ForeignKey(Dropzone, on_delete=models.CASCADE, related_name="roles")
    name = models.CharField(max_length=100)
    capabilities = models.JSONField(default=list, blank=True)

    class Meta:
        ordering = ["name"]
        constraints = [
            models.UniqueConstraint(fields=["dropzone", "name"], name="manifest_role_unique_name"),
        ]

    def __str__(self):
        return f"{self.dropzone}: {self.name}"


class DropzoneUser(ManifestBaseModel):
    """A user's membership of one dropzone, holding exactly one role."""

    dropzone = models.ForeignKey(Dropzone, on_delete=models.CASCADE, related_name="members")
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="dropzone_memberships",
    )
    role = models.ForeignKey(
        DropzoneRole,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="members",
    )
    credits = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0"))
    expires_at = models.DateTimeField(null=True, blank=True, help_text="Membership expiry")
    exit_weight = models.DecimalField(max_digits=6, decimal_places=2, null=True, blank=True)
    license_id = models.PositiveIntegerField(null=True, blank=True)
    has_rig = models.BooleanField(default=False)
    rig_inspected = models.BooleanField(default=False)
    reserve_repack_expires_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["dropzone", "user"], name="manifest_dropzone_user_unique"),
        ]

    def __str__(self):
        return self.display_name

    @property
    def display_name(self) -> str:
        full_name = self.user.get_full_name() if hasattr(self.user, "get_full_name") else ""
        return full_name or self.user.get_username()

    @property
    def capabilities(self) -> frozenset:
        if self.role is None:
            return frozenset()
        return frozenset(self.role.capabilities or [])


class Load(ManifestBaseModel):
    """One scheduled flight. Immutable once `has_landed` is set."""

    dropzone = models.ForeignKey(Dropzone, on_delete=models.CASCADE, related_name="loads")
    name = models.CharField(max_length=100, blank=True)
    load_number = models.PositiveIntegerField(help_text="Sequence number within the dropzone's day")
    plane = models.ForeignKey(
        Plane,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="loads",
    )
    max_slots = models.PositiveIntegerField()
    pilot = models.ForeignKey(
        DropzoneUser, null=True, blank=True, on_delete=models.SET_NULL, related_name="+"
    )
    gca = models.ForeignKey(
        DropzoneUser, null=True, blank=True, on_delete=models.SET_NULL, related_name="+"
    )
    load_master = models.ForeignKey(
        DropzoneUser, null=True, blank=True, on_delete=models.SET_NULL, related_name="+"
    )
    dispatch_at = models.DateTimeField(null=True, blank=True)
    has_landed = models.BooleanField(default=False)
    is_open = models.BooleanField(default=True, help_text="Accepts self-manifesting")

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["dropzone", "created_at"], name="manifest_load_dz_created_idx"),
        ]

    def __str__(self):
        return f"Load #{self.load_number}"


class Slot(ManifestBaseModel):
    """One seat on a load. Removed slots are deleted, not soft-deleted."""

    load = models.ForeignKey(Load, on_delete=models.CASCADE, related_name="slots")
    dropzone_user = models.ForeignKey(DropzoneUser, on_delete=models.PROTECT, related_name="slots")
    jump_type = models.ForeignKey(JumpType, on_delete=models.PROTECT, related_name="slots")
    ticket_type = models.ForeignKey(TicketType, on_delete=models.PROTECT, related_name="slots")
    extras = models.ManyToManyField(Extra, blank=True, related_name="slots")
    exit_weight = models.DecimalField(max_digits=6, decimal_places=2, null=True, blank=True)
    passenger_name = models.CharField(max_length=200, blank=True)
    passenger_exit_weight = models.DecimalField(max_digits=6, decimal_places=2, null=True, blank=True)
    group_number = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Shared by slots manifested together"
    )
    cost = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0"))

    class Meta:
        ordering = ["created_at", "id"]

    def __str__(self):
        return f"{self.dropzone_user} on {self.load}"


class CreditTransaction(ManifestBaseModel):
    """Credit movement for a slot. Debits are negative, refunds positive."""

    class Status(models.TextChoices):
        PAID = "paid", "Paid"
        REFUNDED = "refunded", "Refunded"

    dropzone_user = models.ForeignKey(
        DropzoneUser, on_delete=models.CASCADE, related_name="credit_transactions"
    )
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    status = models.CharField(max_length=20, choices=Status.choices)
    message = models.CharField(max_length=255, blank=True)
    slot_ref = models.CharField(
        max_length=64,
        blank=True,
        help_text="Id of the slot charged or refunded (slots are deleted on removal)"
    )

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.amount} ({self.status})"


class IdempotencyKey(models.Model):
    """
    Prevents duplicate slots from retried manifest requests.

    State machine: pending -> processing -> succeeded/failed

    A succeeded key replays its `response_snapshot`; a failed key may be
    retried.
    """

    class State(models.TextChoices):
        PENDING = "pending", "Pending"
        PROCESSING = "processing", "Processing"
        SUCCEEDED = "succeeded", "Succeeded"
        FAILED = "failed", "Failed"

    scope = models.CharField(max_length=100, help_text="Operation scope, e.g. 'create_slots'")
    key = models.CharField(max_length=255)
    request_hash = models.CharField(
        max_length=64,
        blank=True,
        help_text="Hash of the request for mismatch detection",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    expires_at = models.DateTimeField(null=True, blank=True, help_text="When this key can be cleaned up")

    state = models.CharField(max_length=20, choices=State.choices, default=State.PENDING)
    locked_at = models.DateTimeField(null=True, blank=True)

    error_code = models.CharField(max_length=100, blank=True)
    error_message = models.TextField(blank=True)

    response_snapshot = models.JSONField(null=True, blank=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["scope", "key"], name="manifest_idempotency_unique_key"),
        ]
        indexes = [
            models.Index(fields=["expires_at"], name="manifest_idem_expires_idx"),
            models.Index(fields=["state"], name="manifest_idem_state_idx"),
        ]

    def __str__(self):
        return f"{self.scope}:{self.key} ({self.state})"
