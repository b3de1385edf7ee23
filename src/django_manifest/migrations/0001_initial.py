# Generated manually for standalone django-manifest package

from decimal import Decimal

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


def base_fields():
    return [
        (
            "id",
            models.BigAutoField(
                auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
            ),
        ),
        ("created_at", models.DateTimeField(auto_now_add=True)),
        ("updated_at", models.DateTimeField(auto_now=True)),
        ("deleted_at", models.DateTimeField(blank=True, null=True)),
    ]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Dropzone",
            fields=base_fields() + [
                ("name", models.CharField(max_length=200)),
                ("is_public", models.BooleanField(default=True)),
                (
                    "credit_system_enabled",
                    models.BooleanField(
                        default=False,
                        help_text="Charge slot costs against dropzone user credits",
                    ),
                ),
            ],
            options={"ordering": ["name"]},
        ),
        migrations.CreateModel(
            name="JumpType",
            fields=base_fields() + [
                ("name", models.CharField(max_length=100)),
                ("slug", models.SlugField(max_length=100, unique=True)),
            ],
            options={"ordering": ["name"]},
        ),
        migrations.CreateModel(
            name="Plane",
            fields=base_fields() + [
                ("name", models.CharField(max_length=100)),
                ("registration", models.CharField(blank=True, max_length=50)),
                ("min_slots", models.PositiveIntegerField(default=0)),
                ("max_slots", models.PositiveIntegerField(help_text="Seats available for slots")),
                (
                    "dropzone",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="planes",
                        to="django_manifest.dropzone",
                    ),
                ),
            ],
            options={"ordering": ["name"]},
        ),
        migrations.CreateModel(
            name="TicketType",
            fields=base_fields() + [
                ("name", models.CharField(max_length=100)),
                ("cost", models.DecimalField(decimal_places=2, default=Decimal("0"), max_digits=10)),
                ("altitude", models.PositiveIntegerField(blank=True, null=True)),
                (
                    "is_tandem",
                    models.BooleanField(
                        default=False,
                        help_text="Slots with this ticket carry passenger details",
                    ),
                ),
                ("allow_manifesting_self", models.BooleanField(default=True)),
                (
                    "dropzone",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="ticket_types",
                        to="django_manifest.dropzone",
                    ),
                ),
            ],
            options={"ordering": ["name"]},
        ),
        migrations.CreateModel(
            name="Extra",
            fields=base_fields() + [
                ("name", models.CharField(max_length=100)),
                ("cost", models.DecimalField(decimal_places=2, default=Decimal("0"), max_digits=10)),
                (
                    "dropzone",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="extras",
                        to="django_manifest.dropzone",
                    ),
                ),
                (
                    "ticket_types",
                    models.ManyToManyField(
                        blank=True, related_name="extras", to="django_manifest.tickettype"
                    ),
                ),
            ],
            options={"ordering": ["name"]},
        ),
        migrations.CreateModel(
            name="DropzoneRole",
            fields=base_fields() + [
                ("name", models.CharField(max_length=100)),
                ("capabilities", models.JSONField(blank=True, default=list)),
                (
                    "dropzone",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="roles",
                        to="django_manifest.dropzone",
                    ),
                ),
            ],
            options={
                "ordering": ["name"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("dropzone", "name"), name="manifest_role_unique_name"
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="DropzoneUser",
            fields=base_fields() + [
                ("credits", models.DecimalField(decimal_places=2, default=Decimal("0"), max_digits=10)),
                (
                    "expires_at",
                    models.DateTimeField(blank=True, help_text="Membership expiry", null=True),
                ),
                ("exit_weight", models.DecimalField(blank=True, decimal_places=2, max_digits=6, null=True)),
                ("license_id", models.PositiveIntegerField(blank=True, null=True)),
                ("has_rig", models.BooleanField(default=False)),
                ("rig_inspected", models.BooleanField(default=False)),
                ("reserve_repack_expires_at", models.DateTimeField(blank=True, null=True)),
                (
                    "dropzone",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="members",
                        to="django_manifest.dropzone",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="dropzone_memberships",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "role",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="members",
                        to="django_manifest.dropzonerole",
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(
                        fields=("dropzone", "user"), name="manifest_dropzone_user_unique"
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Load",
            fields=base_fields() + [
                ("name", models.CharField(blank=True, max_length=100)),
                (
                    "load_number",
                    models.PositiveIntegerField(help_text="Sequence number within the dropzone's day"),
                ),
                ("max_slots", models.PositiveIntegerField()),
                ("dispatch_at", models.DateTimeField(blank=True, null=True)),
                ("has_landed", models.BooleanField(default=False)),
                ("is_open", models.BooleanField(default=True, help_text="Accepts self-manifesting")),
                (
                    "dropzone",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="loads",
                        to="django_manifest.dropzone",
                    ),
                ),
                (
                    "plane",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="loads",
                        to="django_manifest.plane",
                    ),
                ),
                (
                    "pilot",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to="django_manifest.dropzoneuser",
                    ),
                ),
                (
                    "gca",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to="django_manifest.dropzoneuser",
                    ),
                ),
                (
                    "load_master",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to="django_manifest.dropzoneuser",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["dropzone", "created_at"], name="manifest_load_dz_created_idx"
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Slot",
            fields=base_fields() + [
                ("exit_weight", models.DecimalField(blank=True, decimal_places=2, max_digits=6, null=True)),
                ("passenger_name", models.CharField(blank=True, max_length=200)),
                (
                    "passenger_exit_weight",
                    models.DecimalField(blank=True, decimal_places=2, max_digits=6, null=True),
                ),
                (
                    "group_number",
                    models.PositiveIntegerField(
                        blank=True, help_text="Shared by slots manifested together", null=True
                    ),
                ),
                ("cost", models.DecimalField(decimal_places=2, default=Decimal("0"), max_digits=10)),
                (
                    "load",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="slots",
                        to="django_manifest.load",
                    ),
                ),
                (
                    "dropzone_user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="slots",
                        to="django_manifest.dropzoneuser",
                    ),
                ),
                (
                    "jump_type",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="slots",
                        to="django_manifest.jumptype",
                    ),
                ),
                (
                    "ticket_type",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="slots",
                        to="django_manifest.tickettype",
                    ),
                ),
                (
                    "extras",
                    models.ManyToManyField(
                        blank=True, related_name="slots", to="django_manifest.extra"
                    ),
                ),
            ],
            options={"ordering": ["created_at", "id"]},
        ),
        migrations.CreateModel(
            name="CreditTransaction",
            fields=base_fields() + [
                ("amount", models.DecimalField(decimal_places=2, max_digits=10)),
                (
                    "status",
                    models.CharField(
                        choices=[("paid", "Paid"), ("refunded", "Refunded")], max_length=20
                    ),
                ),
                ("message", models.CharField(blank=True, max_length=255)),
                (
                    "slot_ref",
                    models.CharField(
                        blank=True,
                        help_text="Id of the slot charged or refunded (slots are deleted on removal)",
                        max_length=64,
                    ),
                ),
                (
                    "dropzone_user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="credit_transactions",
                        to="django_manifest.dropzoneuser",
                    ),
                ),
            ],
            options={"ordering": ["-created_at"]},
        ),
        migrations.CreateModel(
            name="IdempotencyKey",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                (
                    "scope",
                    models.CharField(help_text="Operation scope, e.g. 'create_slots'", max_length=100),
                ),
                ("key", models.CharField(max_length=255)),
                (
                    "request_hash",
                    models.CharField(
                        blank=True, help_text="Hash of the request for mismatch detection", max_length=64
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "expires_at",
                    models.DateTimeField(
                        blank=True, help_text="When this key can be cleaned up", null=True
                    ),
                ),
                (
                    "state",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("succeeded", "Succeeded"),
                            ("failed", "Failed"),
                        ],
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("locked_at", models.DateTimeField(blank=True, null=True)),
                ("error_code", models.CharField(blank=True, max_length=100)),
                ("error_message", models.TextField(blank=True)),
                ("response_snapshot", models.JSONField(blank=True, null=True)),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(
                        fields=("scope", "key"), name="manifest_idempotency_unique_key"
                    ),
                ],
                "indexes": [
                    models.Index(fields=["expires_at"], name="manifest_idem_expires_idx"),
                    models.Index(fields=["state"], name="manifest_idem_state_idx"),
                ],
            },
        ),
    ]
