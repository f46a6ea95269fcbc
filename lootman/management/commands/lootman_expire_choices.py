"""Management command to expire pending choices past their window."""

from django.core.management.base import BaseCommand

from lootman.services.choices import ChoiceService


class Command(BaseCommand):
    help = "Mark pending award choices past expires_at as expired"

    def add_arguments(self, parser):
        parser.add_argument(
            "--business",
            default=None,
            help="Only sweep choices of this business code",
        )

    def handle(self, *args, **options):
        expired = ChoiceService.expire_overdue(business_code=options["business"])
        self.stdout.write(
            self.style.SUCCESS(f"Expired {expired} pending choices.")
        )
