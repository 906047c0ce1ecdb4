from django.conf import settings
from django.core.management.base import BaseCommand

from apps.orders.providers import get_deposit_manager


class Command(BaseCommand):
    help = "Expire deposit reservations whose deposit did not arrive before the due time"

    def add_arguments(self, parser):
        parser.add_argument(
            "--max", type=int, default=getattr(settings, "DEPOSIT_EXPIRY_BATCH", 200),
            help="Max reservations to expire in this run (0=all)",
        )

    def handle(self, *args, **opts):
        expired = get_deposit_manager().expire_overdue(limit=opts["max"] or None)
        self.stdout.write(self.style.SUCCESS(f"Expired {expired} deposit reservations."))
