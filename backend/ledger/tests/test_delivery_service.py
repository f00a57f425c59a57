"""
Tests for deliveries and delivery notes: stock deduction, the status machine
and stock restoration on cancel / return.
"""

from decimal import Decimal

from django.test import TestCase

from ledger.choices import MovementType
from ledger.models import Delivery, DeliveryNote, Invoice, StockMovement
from ledger.services import DeliveryService, PaymentService, StockLedger
from ledger.tests.helpers import make_customer, make_invoice, make_product
from utils.exceptions import (
    DuplicateDeliveryError,
    EntityNotFoundError,
    InsufficientStockError,
    InvalidEntityStateError,
    InvalidStatusTransitionError,
)


class DeliveryTestCase(TestCase):

    def setUp(self):
        self.widget = make_product('PRD-001', stock=10)
        self.gadget = make_product('PRD-002', stock=10)
        self.invoice = make_invoice([(self.widget, 5, '20.00'), (self.gadget, 3, '10.00')])

    def stock(self, product):
        product.refresh_from_db()
        return product.current_stock

    def test_create_delivery_takes_stock(self):
        delivery = DeliveryService.create_delivery(self.invoice.id, helper='Sam', performed_by='clerk')

        self.assertEqual(delivery.status, Delivery.Status.PENDING)
        self.assertEqual(self.stock(self.widget), 5)
        self.assertEqual(self.stock(self.gadget), 7)
        sales = delivery.movements.filter(movement_type=MovementType.SALES_OUT)
        self.assertEqual(sales.count(), 2)
        self.assertEqual(sales.get(product=self.widget).reference, f'Delivery #{delivery.code}')

    def test_draft_invoice_cannot_be_delivered(self):
        draft = make_invoice([(self.widget, 1, '20.00')], status=Invoice.Status.DRAFT)
        with self.assertRaises(InvalidEntityStateError):
            DeliveryService.create_delivery(draft.id)

    def test_insufficient_stock_rolls_back(self):
        big = make_invoice([(self.widget, 2, '20.00'), (self.gadget, 11, '10.00')])

        with self.assertRaises(InsufficientStockError):
            DeliveryService.create_delivery(big.id)

        self.assertEqual(self.stock(self.widget), 10)
        self.assertEqual(self.stock(self.gadget), 10)
        self.assertFalse(Delivery.objects.filter(invoice=big).exists())

    def test_second_active_delivery_rejected(self):
        DeliveryService.create_delivery(self.invoice.id)
        with self.assertRaises(DuplicateDeliveryError):
            DeliveryService.create_delivery(self.invoice.id)
        self.assertEqual(self.stock(self.widget), 5)

    def test_cancel_restores_stock(self):
        delivery = DeliveryService.create_delivery(self.invoice.id)

        delivery = DeliveryService.update_delivery_status(delivery.id, Delivery.Status.CANCELLED)

        self.assertEqual(delivery.status, Delivery.Status.CANCELLED)
        self.assertEqual(self.stock(self.widget), 10)
        self.assertEqual(self.stock(self.gadget), 10)
        returns = StockMovement.objects.filter(delivery=delivery, movement_type=MovementType.RETURN_IN)
        self.assertEqual(returns.count(), 2)
        self.assertEqual(returns.get(product=self.widget).quantity, 5)
        self.assertEqual(returns.get(product=self.gadget).quantity, 3)
        for reversal in returns:
            self.assertEqual(reversal.reversal_of.movement_type, MovementType.SALES_OUT)

    def test_second_cancel_rejected_without_touching_stock(self):
        delivery = DeliveryService.create_delivery(self.invoice.id)
        DeliveryService.update_delivery_status(delivery.id, Delivery.Status.CANCELLED)

        with self.assertRaises(InvalidStatusTransitionError):
            DeliveryService.update_delivery_status(delivery.id, Delivery.Status.CANCELLED)

        self.assertEqual(self.stock(self.widget), 10)
        self.assertEqual(
            StockMovement.objects.filter(delivery=delivery, movement_type=MovementType.RETURN_IN).count(),
            2
        )

    def test_return_after_transit_restores_stock(self):
        delivery = DeliveryService.create_delivery(self.invoice.id)
        DeliveryService.update_delivery_status(delivery.id, Delivery.Status.IN_TRANSIT)

        delivery = DeliveryService.update_delivery_status(
            delivery.id, Delivery.Status.RETURNED, return_reason='Customer refused'
        )

        self.assertEqual(delivery.return_reason, 'Customer refused')
        self.assertEqual(self.stock(self.widget), 10)
        self.assertEqual(self.stock(self.gadget), 10)

    def test_delivered_keeps_stock_out(self):
        delivery = DeliveryService.create_delivery(self.invoice.id)
        DeliveryService.update_delivery_status(delivery.id, Delivery.Status.IN_TRANSIT)
        delivery = DeliveryService.update_delivery_status(delivery.id, Delivery.Status.DELIVERED)

        self.assertIsNotNone(delivery.completed_at)
        self.assertTrue(delivery.is_locked)
        self.assertEqual(self.stock(self.widget), 5)
        with self.assertRaises(InvalidStatusTransitionError):
            DeliveryService.update_delivery_status(delivery.id, Delivery.Status.RETURNED)

    def test_pending_cannot_jump_to_delivered(self):
        delivery = DeliveryService.create_delivery(self.invoice.id)
        with self.assertRaises(InvalidStatusTransitionError):
            DeliveryService.update_delivery_status(delivery.id, Delivery.Status.DELIVERED)

    def test_cancelled_delivery_frees_the_invoice(self):
        delivery = DeliveryService.create_delivery(self.invoice.id)
        DeliveryService.update_delivery_status(delivery.id, Delivery.Status.CANCELLED)

        second = DeliveryService.create_delivery(self.invoice.id)

        self.assertNotEqual(second.id, delivery.id)
        self.assertEqual(self.stock(self.widget), 5)

    def test_delete_pending_delivery_undoes_movements(self):
        delivery = DeliveryService.create_delivery(self.invoice.id)

        DeliveryService.delete_delivery(delivery.id)

        self.assertFalse(Delivery.objects.filter(pk=delivery.pk).exists())
        self.assertEqual(self.stock(self.widget), 10)
        self.assertFalse(StockMovement.objects.filter(movement_type=MovementType.SALES_OUT).exists())
        self.assertEqual(StockLedger.replay_balance(self.widget.id), 10)

    def test_delete_cancelled_delivery_keeps_history(self):
        delivery = DeliveryService.create_delivery(self.invoice.id)
        DeliveryService.update_delivery_status(delivery.id, Delivery.Status.CANCELLED)

        DeliveryService.delete_delivery(delivery.id)

        self.assertEqual(self.stock(self.widget), 10)
        self.assertEqual(StockMovement.objects.filter(product=self.widget).count(), 3)
        self.assertEqual(StockLedger.replay_balance(self.widget.id), 10)

    def test_delete_in_transit_refused(self):
        delivery = DeliveryService.create_delivery(self.invoice.id)
        DeliveryService.update_delivery_status(delivery.id, Delivery.Status.IN_TRANSIT)
        with self.assertRaises(InvalidEntityStateError):
            DeliveryService.delete_delivery(delivery.id)

    def test_missing_delivery(self):
        with self.assertRaises(EntityNotFoundError):
            DeliveryService.update_delivery_status(999999, Delivery.Status.CANCELLED)


class DeliveryNoteTestCase(TestCase):

    def setUp(self):
        self.customer = make_customer()
        self.widget = make_product('PRD-001', stock=10)
        self.invoice = make_invoice(
            [(self.widget, 4, '25.00')], customer=self.customer, use_delivery_note=True
        )

    def pay_in_full(self):
        PaymentService.create_payment(self.invoice.id, self.invoice.total_amount)

    def test_unpaid_invoice_rejected(self):
        PaymentService.create_payment(self.invoice.id, Decimal('50.00'))
        with self.assertRaises(InvalidEntityStateError):
            DeliveryService.create_delivery_note(self.invoice.id)

    def test_invoice_must_use_delivery_notes(self):
        plain = make_invoice([(self.widget, 1, '25.00')])
        PaymentService.create_payment(plain.id, plain.total_amount)
        with self.assertRaises(InvalidEntityStateError):
            DeliveryService.create_delivery_note(plain.id)

    def test_create_note_for_paid_invoice(self):
        self.pay_in_full()

        note = DeliveryService.create_delivery_note(
            self.invoice.id, driver_name='Joe', vehicle_number='KBX 123A', warehouse_user='store'
        )

        self.widget.refresh_from_db()
        self.assertEqual(self.widget.current_stock, 6)
        self.assertEqual(note.customer, self.customer)
        self.assertEqual(note.items.count(), 1)
        self.assertEqual(note.items.get().quantity, 4)
        self.assertEqual(note.items.get().delivered_qty, 0)
        self.assertEqual(note.movements.get().reference, f'Delivery Note #{note.code}')

    def test_note_and_delivery_are_exclusive(self):
        self.pay_in_full()
        DeliveryService.create_delivery_note(self.invoice.id)
        with self.assertRaises(DuplicateDeliveryError):
            DeliveryService.create_delivery(self.invoice.id)

    def test_delivered_fills_delivered_qty(self):
        self.pay_in_full()
        note = DeliveryService.create_delivery_note(self.invoice.id)
        DeliveryService.update_delivery_note_status(note.id, DeliveryNote.Status.IN_TRANSIT)

        note = DeliveryService.update_delivery_note_status(note.id, DeliveryNote.Status.DELIVERED)

        self.assertIsNotNone(note.completed_at)
        self.assertEqual(note.items.get().delivered_qty, 4)

    def test_cancel_note_restores_stock(self):
        self.pay_in_full()
        note = DeliveryService.create_delivery_note(self.invoice.id)

        DeliveryService.update_delivery_note_status(note.id, DeliveryNote.Status.CANCELLED)

        self.widget.refresh_from_db()
        self.assertEqual(self.widget.current_stock, 10)
        self.assertEqual(note.movements.filter(movement_type=MovementType.RETURN_IN).count(), 1)

    def test_update_note_details(self):
        self.pay_in_full()
        note = DeliveryService.create_delivery_note(self.invoice.id)

        note = DeliveryService.update_delivery_note(note.id, driver_name='Ann', vehicle_number='KCA 999Z')

        self.assertEqual(note.driver_name, 'Ann')
        self.assertEqual(note.vehicle_number, 'KCA 999Z')

    def test_terminal_note_is_read_only(self):
        self.pay_in_full()
        note = DeliveryService.create_delivery_note(self.invoice.id)
        DeliveryService.update_delivery_note_status(note.id, DeliveryNote.Status.CANCELLED)

        with self.assertRaises(InvalidEntityStateError):
            DeliveryService.update_delivery_note(note.id, driver_name='Ann')

    def test_delete_pending_note(self):
        self.pay_in_full()
        note = DeliveryService.create_delivery_note(self.invoice.id)

        DeliveryService.delete_delivery_note(note.id)

        self.widget.refresh_from_db()
        self.assertEqual(self.widget.current_stock, 10)
        self.assertFalse(DeliveryNote.objects.filter(pk=note.pk).exists())
