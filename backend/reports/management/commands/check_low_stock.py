"""
Management command to report low stock products and optionally email the digest
"""
from django.core.management.base import BaseCommand, CommandError

from backend.core.exceptions import InventoryError
from backend.reports import low_stock


class Command(BaseCommand):
    help = 'List products at or below their low stock threshold and optionally send the alert digest'

    def add_arguments(self, parser):
        parser.add_argument(
            '--send',
            action='store_true',
            help='Email the low stock digest to every subscribed administrator',
        )

    def handle(self, *args, **options):
        items = low_stock.list_low_stock()

        self.stdout.write("=" * 80)
        self.stdout.write(self.style.SUCCESS("LOW STOCK REPORT"))
        self.stdout.write("=" * 80)

        if not items:
            self.stdout.write("No low stock items found.")
        for item in items:
            self.stdout.write(
                f"{item.product.name} (SKU: {item.product.sku}) - "
                f"stock {item.stock} / threshold {item.threshold}"
                f"{' [bundle]' if item.product.is_bundle else ''}"
            )
        self.stdout.write(f"Total low stock products: {len(items)}")

        if not options['send']:
            return

        try:
            result = low_stock.send_all_alerts()
        except InventoryError as exc:
            raise CommandError(exc.message)

        self.stdout.write(result.message)
        if result.failed_count:
            self.stdout.write(self.style.WARNING(
                f"Sent: {result.sent_count}, Failed: {result.failed_count}"
            ))
        else:
            self.stdout.write(self.style.SUCCESS(f"Sent: {result.sent_count}, Failed: 0"))
