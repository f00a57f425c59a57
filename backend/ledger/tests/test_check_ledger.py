"""
Tests for the check_ledger management command.
"""

from decimal import Decimal
from io import StringIO

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase

from ledger.models import Invoice, Product
from ledger.services import PaymentService
from ledger.tests.helpers import make_invoice, make_product


class CheckLedgerCommandTestCase(TestCase):

    def setUp(self):
        self.product = make_product('PRD-001', stock=10)
        self.invoice = make_invoice([(self.product, 1, '100.00')])
        PaymentService.create_payment(self.invoice.id, Decimal('40.00'))

    def test_consistent_ledger(self):
        out = StringIO()
        call_command('check_ledger', stdout=out)
        self.assertIn('Ledger balances match their history', out.getvalue())

    def test_stock_drift_is_reported(self):
        Product.objects.filter(pk=self.product.pk).update(current_stock=7)
        out = StringIO()

        with self.assertRaises(CommandError):
            call_command('check_ledger', stdout=out)

        self.assertIn('PRD-001: current_stock=7, movements sum to 10', out.getvalue())

    def test_payment_drift_is_reported(self):
        Invoice.objects.filter(pk=self.invoice.pk).update(paid_amount=Decimal('10.00'))
        out = StringIO()

        with self.assertRaises(CommandError):
            call_command('check_ledger', stdout=out)

        self.assertIn(f'{self.invoice.code}: paid_amount=10.00', out.getvalue())

    def test_single_product(self):
        other = make_product('PRD-002', stock=3)
        Product.objects.filter(pk=self.product.pk).update(current_stock=7)
        out = StringIO()

        call_command('check_ledger', product=other.id, stdout=out)

        self.assertIn('Products checked: 1, drifted: 0', out.getvalue())

    def test_unknown_product(self):
        with self.assertRaises(CommandError):
            call_command('check_ledger', product=999999, stdout=StringIO())
