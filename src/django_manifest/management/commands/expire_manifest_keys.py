"""Delete manifest idempotency keys past their expiry."""

from django.core.management.base import BaseCommand
from django.utils import timezone

from django_manifest.models import IdempotencyKey


class Command(BaseCommand):
    help = "Delete expired manifest idempotency keys"

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Only report how many keys would be deleted",
        )

    def handle(self, *args, **options):
        # In-flight keys are kept so a slow request cannot be replayed twice
        qs = IdempotencyKey.objects.filter(expires_at__lt=timezone.now()).exclude(
            state=IdempotencyKey.State.PROCESSING
        )

        if options["dry_run"]:
            self.stdout.write(f"Would delete {qs.count()} expired idempotency keys")
            return

        deleted, _ = qs.delete()
        self.stdout.write(self.style.SUCCESS(f"Deleted {deleted} expired idempotency keys"))
