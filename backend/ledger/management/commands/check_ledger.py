"""
Django management command to verify the ledger against its own history.

Checks that:
- every product's current_stock equals the sum of its stock movements
- every invoice's paid_amount equals the sum of its payments

Usage:
    python manage.py check_ledger
    python manage.py check_ledger --product 12
"""

from decimal import Decimal

from django.core.management.base import BaseCommand, CommandError
from django.db.models import Sum

from ledger.models import Invoice, Product
from ledger.services import StockLedger


class Command(BaseCommand):
    help = 'Replay stock movements and payments and report any drift from stored balances'

    def add_arguments(self, parser):
        parser.add_argument(
            '--product',
            type=int,
            help='Only check this product id (skips the invoice check)',
        )

    def handle(self, *args, **options):
        products = Product.objects.order_by('id')
        if options['product']:
            products = products.filter(id=options['product'])
            if not products.exists():
                raise CommandError(f"Product {options['product']} not found")

        stock_drift = 0
        for product in products:
            replayed = StockLedger.replay_balance(product.id)
            if replayed != product.current_stock:
                stock_drift += 1
                self.stdout.write(
                    self.style.ERROR(
                        f'✗ {product.code}: current_stock={product.current_stock}, movements sum to {replayed}'
                    )
                )

        payment_drift = 0
        if not options['product']:
            invoices = Invoice.objects.annotate(payments_total=Sum('payments__amount')).order_by('id')
            for invoice in invoices:
                paid = invoice.payments_total or Decimal('0.00')
                if paid != invoice.paid_amount:
                    payment_drift += 1
                    self.stdout.write(
                        self.style.ERROR(
                            f'✗ {invoice.code}: paid_amount={invoice.paid_amount}, payments sum to {paid}'
                        )
                    )

        self.stdout.write('=' * 70)
        self.stdout.write(f'Products checked: {products.count()}, drifted: {stock_drift}')
        if not options['product']:
            self.stdout.write(f'Invoices checked: {Invoice.objects.count()}, drifted: {payment_drift}')
        self.stdout.write('=' * 70)

        if stock_drift or payment_drift:
            raise CommandError(f'Ledger drift found: {stock_drift} product(s), {payment_drift} invoice(s)')

        self.stdout.write(self.style.SUCCESS('✓ Ledger balances match their history'))
