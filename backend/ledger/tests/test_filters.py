"""
Tests for the ledger filter sets.

Covers:
- Stock status filter on products
- Reversal filter on stock movements
- Date range and remaining amount filters on invoices
"""

from datetime import timedelta
from decimal import Decimal

from django.test import TestCase
from django.utils import timezone

from ledger.choices import MovementType
from ledger.filters import InvoiceFilter, PaymentFilter, ProductFilter, StockMovementFilter
from ledger.models import Invoice, Payment, Product, StockMovement
from ledger.services import PaymentService, StockChange, StockLedger
from ledger.tests.helpers import make_invoice, make_product


class ProductFilterTestCase(TestCase):

    def setUp(self):
        self.empty = make_product('PRD-001', stock=0)
        self.low = make_product('PRD-002', stock=4, min_stock=5)
        self.plenty = make_product('PRD-003', stock=50, min_stock=5)

    def codes(self, **params):
        return sorted(ProductFilter(params, queryset=Product.objects.all()).qs.values_list('code', flat=True))

    def test_stock_status(self):
        self.assertEqual(self.codes(stock='OUT_OF_STOCK'), ['PRD-001'])
        self.assertEqual(self.codes(stock='LOW_STOCK'), ['PRD-002'])
        self.assertEqual(self.codes(stock='IN_STOCK'), ['PRD-003'])

    def test_active_flag(self):
        Product.objects.filter(pk=self.plenty.pk).update(is_active=False)
        self.assertEqual(self.codes(is_active='false'), ['PRD-003'])


class StockMovementFilterTestCase(TestCase):

    def setUp(self):
        self.product = make_product('PRD-001', stock=10)
        self.sale = StockLedger.apply(self.product.id, StockChange.outbound(MovementType.SALES_OUT, 2))
        self.reversal = StockLedger.reverse(self.sale)

    def ids(self, **params):
        return set(StockMovementFilter(params, queryset=StockMovement.objects.all()).qs.values_list('id', flat=True))

    def test_reversal_filter(self):
        self.assertEqual(self.ids(is_reversal='true'), {self.reversal.id})
        self.assertNotIn(self.reversal.id, self.ids(is_reversal='false'))

    def test_movement_type(self):
        self.assertEqual(self.ids(movement_type=MovementType.SALES_OUT), {self.sale.id})

    def test_date_range(self):
        today = timezone.localdate()
        self.assertEqual(len(self.ids(start_date=str(today), end_date=str(today))), 3)
        self.assertEqual(self.ids(start_date=str(today + timedelta(days=1))), set())


class InvoiceFilterTestCase(TestCase):

    def setUp(self):
        self.product = make_product('PRD-001', stock=10)
        self.open = make_invoice([(self.product, 1, '100.00')])
        self.partly = make_invoice([(self.product, 1, '100.00')])
        PaymentService.create_payment(self.partly.id, Decimal('80.00'))
        self.old = make_invoice(
            [(self.product, 1, '30.00')], invoice_date=timezone.now() - timedelta(days=30)
        )

    def codes(self, **params):
        return set(InvoiceFilter(params, queryset=Invoice.objects.all()).qs.values_list('code', flat=True))

    def test_remaining_range(self):
        self.assertEqual(self.codes(max_remaining='50'), {self.partly.code, self.old.code})
        self.assertEqual(self.codes(min_remaining='50'), {self.open.code})

    def test_payment_status(self):
        self.assertEqual(self.codes(payment_status=Invoice.PaymentStatus.PARTIALLY_PAID), {self.partly.code})

    def test_invoice_date_range(self):
        since = timezone.localdate() - timedelta(days=7)
        self.assertEqual(self.codes(start_date=str(since)), {self.open.code, self.partly.code})

    def test_payment_amount_range(self):
        payments = PaymentFilter({'min_amount': '50'}, queryset=Payment.objects.all()).qs
        self.assertEqual(payments.count(), 1)
