"""Management command to cleanup old award grant receipts."""

from django.core.management.base import BaseCommand

from lootman.models import AwardGrant


class Command(BaseCommand):
    help = "Remove award grant receipts older than GRANT_CLEANUP_DAYS"

    def add_arguments(self, parser):
        parser.add_argument(
            "--days",
            type=int,
            default=None,
            help="Override GRANT_CLEANUP_DAYS setting",
        )

    def handle(self, *args, **options):
        deleted_count, _ = AwardGrant.cleanup_old_grants(days=options["days"])
        self.stdout.write(
            self.style.SUCCESS(f"Deleted {deleted_count} old award grants.")
        )
