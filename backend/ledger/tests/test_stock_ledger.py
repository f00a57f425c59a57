"""
Tests for the stock ledger: balance updates, reversals, undo and manual adjustments.
"""

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.test import TestCase

from ledger.choices import MovementType
from ledger.models import Product, StockMovement
from ledger.services import StockChange, StockLedger, StockMovementService
from ledger.tests.helpers import make_product
from utils.exceptions import (
    EntityNotFoundError,
    InsufficientStockError,
    InvalidEntityStateError,
)


class StockLedgerApplyTestCase(TestCase):

    def setUp(self):
        self.product = make_product('PRD-001', stock=10)

    def test_apply_records_snapshots(self):
        movement = StockLedger.apply(
            self.product.id,
            StockChange.outbound(MovementType.ADJUSTMENT_OUT, 4),
            reference='Damaged',
            performed_by='clerk',
        )

        self.product.refresh_from_db()
        self.assertEqual(self.product.current_stock, 6)
        self.assertEqual(movement.quantity, 4)
        self.assertEqual(movement.quantity_change, -4)
        self.assertEqual(movement.quantity_before, 10)
        self.assertEqual(movement.quantity_after, 6)
        self.assertEqual(movement.performed_by, 'clerk')
        self.assertEqual(movement.product.current_stock, 6)

    def test_apply_refuses_negative_stock(self):
        with self.assertRaises(InsufficientStockError):
            StockLedger.apply(self.product.id, StockChange.outbound(MovementType.SALES_OUT, 11))

        self.product.refresh_from_db()
        self.assertEqual(self.product.current_stock, 10)
        self.assertEqual(StockMovement.objects.filter(product=self.product).count(), 1)

    def test_apply_to_exactly_zero(self):
        StockLedger.apply(self.product.id, StockChange.outbound(MovementType.SALES_OUT, 10))
        self.product.refresh_from_db()
        self.assertEqual(self.product.current_stock, 0)
        self.assertTrue(self.product.is_out_of_stock)

    def test_apply_missing_product(self):
        with self.assertRaises(EntityNotFoundError):
            StockLedger.apply(999999, StockChange.inbound(MovementType.ADJUSTMENT_IN, 1))

    def test_apply_rejects_unknown_links(self):
        with self.assertRaises(TypeError):
            StockLedger.apply(
                self.product.id,
                StockChange.inbound(MovementType.ADJUSTMENT_IN, 1),
                invoice_id=1,
            )

    def test_replay_matches_balance(self):
        StockLedger.apply(self.product.id, StockChange.inbound(MovementType.PRODUCTION_IN, 7))
        StockLedger.apply(self.product.id, StockChange.outbound(MovementType.SALES_OUT, 3))
        StockLedger.apply(self.product.id, StockChange.opname(-2))

        self.product.refresh_from_db()
        self.assertEqual(self.product.current_stock, 12)
        self.assertEqual(StockLedger.replay_balance(self.product.id), 12)

    def test_lock_products_reports_missing(self):
        other = make_product('PRD-002')
        with transaction.atomic():
            locked = StockLedger.lock_products([other.id, self.product.id])
        self.assertEqual(set(locked), {self.product.id, other.id})

        with self.assertRaises(EntityNotFoundError):
            with transaction.atomic():
                StockLedger.lock_products([self.product.id, 999999])


class StockMovementIntegrityTestCase(TestCase):

    def setUp(self):
        self.product = make_product('PRD-001', stock=5)

    def test_movements_are_append_only(self):
        movement = StockMovement.objects.get(product=self.product)
        movement.notes = 'edited'
        with self.assertRaises(ValidationError):
            movement.save()

    def test_direction_must_match_type(self):
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                StockMovement.objects.create(
                    movement_type=MovementType.SALES_OUT,
                    product=self.product,
                    quantity=2,
                    quantity_change=2,
                    quantity_before=5,
                    quantity_after=7,
                )

    def test_stock_cannot_be_negative_in_database(self):
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Product.objects.filter(pk=self.product.pk).update(current_stock=-1)


class StockLedgerReverseTestCase(TestCase):

    def setUp(self):
        self.product = make_product('PRD-001', stock=10)
        self.sale = StockLedger.apply(
            self.product.id,
            StockChange.outbound(MovementType.SALES_OUT, 4),
            reference='Delivery #DLV-1',
        )

    def test_reverse_appends_inverse(self):
        reversal = StockLedger.reverse(self.sale, performed_by='clerk')

        self.product.refresh_from_db()
        self.assertEqual(self.product.current_stock, 10)
        self.assertEqual(reversal.movement_type, MovementType.RETURN_IN)
        self.assertEqual(reversal.quantity_change, 4)
        self.assertEqual(reversal.reversal_of, self.sale)
        self.assertEqual(reversal.reference, 'Reversal of Delivery #DLV-1')
        self.assertTrue(StockMovement.objects.get(pk=self.sale.pk).is_reversed)

    def test_reverse_is_idempotent(self):
        StockLedger.reverse(self.sale)
        self.assertIsNone(StockLedger.reverse(self.sale))

        self.product.refresh_from_db()
        self.assertEqual(self.product.current_stock, 10)
        self.assertEqual(StockMovement.objects.filter(reversal_of=self.sale).count(), 1)

    def test_reversal_cannot_be_reversed(self):
        reversal = StockLedger.reverse(self.sale)
        with self.assertRaises(InvalidEntityStateError):
            StockLedger.reverse(reversal)

    def test_reverse_refuses_negative_stock(self):
        inbound = StockLedger.apply(self.product.id, StockChange.inbound(MovementType.PRODUCTION_IN, 5))
        StockLedger.apply(self.product.id, StockChange.outbound(MovementType.SALES_OUT, 11))

        with self.assertRaises(InsufficientStockError):
            StockLedger.reverse(inbound)

    def test_replay_includes_reversals(self):
        StockLedger.reverse(self.sale)
        self.assertEqual(StockLedger.replay_balance(self.product.id), 10)


class StockLedgerUndoTestCase(TestCase):

    def setUp(self):
        self.product = make_product('PRD-001', stock=10)

    def test_undo_deletes_and_restores(self):
        movement = StockLedger.apply(self.product.id, StockChange.inbound(MovementType.PRODUCTION_IN, 5))

        product = StockLedger.undo(movement)

        self.assertEqual(product.current_stock, 10)
        self.assertFalse(StockMovement.objects.filter(pk=movement.pk).exists())
        self.assertEqual(StockLedger.replay_balance(self.product.id), 10)

    def test_undo_refuses_consumed_stock(self):
        movement = StockLedger.apply(self.product.id, StockChange.inbound(MovementType.PRODUCTION_IN, 5))
        StockLedger.apply(self.product.id, StockChange.outbound(MovementType.SALES_OUT, 12))

        with self.assertRaises(InsufficientStockError):
            StockLedger.undo(movement)
        self.assertTrue(StockMovement.objects.filter(pk=movement.pk).exists())

    def test_undo_refuses_reversed_movements(self):
        sale = StockLedger.apply(self.product.id, StockChange.outbound(MovementType.SALES_OUT, 3))
        reversal = StockLedger.reverse(sale)

        with self.assertRaises(InvalidEntityStateError):
            StockLedger.undo(sale)
        with self.assertRaises(InvalidEntityStateError):
            StockLedger.undo(reversal)


class StockMovementServiceTestCase(TestCase):

    def setUp(self):
        self.product = make_product('PRD-001', stock=10)

    def test_create_manual_adjustment(self):
        movement = StockMovementService.create_movement(
            self.product.id, MovementType.ADJUSTMENT_OUT, 3, performed_by='clerk', notes='Broken'
        )
        self.assertEqual(movement.quantity_change, -3)
        self.assertEqual(movement.reference, 'Manual adjustment')
        self.product.refresh_from_db()
        self.assertEqual(self.product.current_stock, 7)

    def test_document_types_cannot_be_created_by_hand(self):
        with self.assertRaises(ValidationError):
            StockMovementService.create_movement(self.product.id, MovementType.SALES_OUT, 1)
        with self.assertRaises(ValidationError):
            StockMovementService.create_movement(self.product.id, MovementType.PRODUCTION_IN, 1)

    def test_signed_opname_correction(self):
        StockMovementService.create_movement(self.product.id, MovementType.OPNAME_ADJUSTMENT, -4)
        self.product.refresh_from_db()
        self.assertEqual(self.product.current_stock, 6)

    def test_delete_adjustment_restores_stock(self):
        movement = StockMovementService.create_movement(self.product.id, MovementType.ADJUSTMENT_IN, 5)

        product = StockMovementService.delete_movement(movement.id)

        self.assertEqual(product.current_stock, 10)
        self.assertFalse(StockMovement.objects.filter(pk=movement.pk).exists())

    def test_delete_refuses_other_types(self):
        movement = StockMovementService.create_movement(self.product.id, MovementType.OPNAME_ADJUSTMENT, 2)
        with self.assertRaises(InvalidEntityStateError):
            StockMovementService.delete_movement(movement.id)

    def test_delete_missing_movement(self):
        with self.assertRaises(EntityNotFoundError):
            StockMovementService.delete_movement(999999)
