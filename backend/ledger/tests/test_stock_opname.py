"""
Tests for stock opname counts and the management stock adjustments that apply them.
"""

from unittest.mock import patch

from django.core.exceptions import ValidationError
from django.test import TestCase

from ledger import broadcast
from ledger.choices import MovementType
from ledger.models import ManagementStock, StockMovement, StockOpname
from ledger.services import ManagementStockService, StockLedger, StockOpnameService
from ledger.tests.helpers import make_product
from utils.exceptions import (
    AlreadyConsumedError,
    InsufficientStockError,
    InvalidEntityStateError,
)


class StockOpnameTestCase(TestCase):

    def setUp(self):
        self.widget = make_product('PRD-001', stock=100)
        self.gadget = make_product('PRD-002', stock=20)

    def test_matching_count_completes(self):
        opname = StockOpnameService.create_stock_opname(
            [{'product_id': self.widget.id, 'physical_stock': 100}], conducted_by='auditor'
        )
        self.assertEqual(opname.status, StockOpname.Status.COMPLETED)
        self.assertEqual(opname.items.get().difference, 0)

    def test_shortage_is_reconciled(self):
        opname = StockOpnameService.create_stock_opname([
            {'product_id': self.widget.id, 'physical_stock': 92},
            {'product_id': self.gadget.id, 'physical_stock': 20},
        ])

        self.assertEqual(opname.status, StockOpname.Status.RECONCILED)
        item = opname.items.get(product=self.widget)
        self.assertEqual(item.system_stock, 100)
        self.assertEqual(item.difference, -8)

    def test_count_does_not_move_stock(self):
        StockOpnameService.create_stock_opname([{'product_id': self.widget.id, 'physical_stock': 92}])
        self.widget.refresh_from_db()
        self.assertEqual(self.widget.current_stock, 100)

    def test_supplied_system_stock_is_kept(self):
        opname = StockOpnameService.create_stock_opname(
            [{'product_id': self.widget.id, 'physical_stock': 90, 'system_stock': 95}]
        )
        self.assertEqual(opname.items.get().difference, -5)

    def test_invalid_counts(self):
        with self.assertRaises(ValidationError):
            StockOpnameService.create_stock_opname([])
        with self.assertRaises(ValidationError):
            StockOpnameService.create_stock_opname([{'product_id': self.widget.id, 'physical_stock': -1}])
        with self.assertRaises(ValidationError):
            StockOpnameService.create_stock_opname([
                {'product_id': self.widget.id, 'physical_stock': 1},
                {'product_id': self.widget.id, 'physical_stock': 2},
            ])
        with self.assertRaises(ValidationError):
            StockOpnameService.create_stock_opname([{'product_id': 'abc', 'physical_stock': 1}])

    def test_update_recounts(self):
        opname = StockOpnameService.create_stock_opname([{'product_id': self.widget.id, 'physical_stock': 92}])

        opname = StockOpnameService.update_stock_opname(
            opname.id, items=[{'product_id': self.widget.id, 'physical_stock': 100}], notes='Recount'
        )

        self.assertEqual(opname.status, StockOpname.Status.COMPLETED)
        self.assertEqual(opname.notes, 'Recount')
        self.assertEqual(opname.items.count(), 1)

    def test_reconciled_listing_only_shows_differences(self):
        reconciled = StockOpnameService.create_stock_opname([
            {'product_id': self.widget.id, 'physical_stock': 92},
            {'product_id': self.gadget.id, 'physical_stock': 20},
        ])
        StockOpnameService.create_stock_opname([{'product_id': self.gadget.id, 'physical_stock': 20}])

        opnames = list(StockOpnameService.reconciled_opnames())

        self.assertEqual([opname.id for opname in opnames], [reconciled.id])
        self.assertEqual([item.product_id for item in opnames[0].differing_items], [self.widget.id])


class OpnameAdjustmentTestCase(TestCase):

    def setUp(self):
        self.widget = make_product('PRD-001', stock=100)
        self.opname = StockOpnameService.create_stock_opname(
            [{'product_id': self.widget.id, 'physical_stock': 92}]
        )

    def test_adjustment_applies_differences(self):
        record = ManagementStockService.create_management_stock(
            ManagementStock.Status.OPNAME_ADJUSTMENT,
            stock_opname_id=self.opname.id,
            produced_by='auditor',
        )

        self.widget.refresh_from_db()
        self.opname.refresh_from_db()
        self.assertEqual(self.widget.current_stock, 92)
        self.assertEqual(self.opname.status, StockOpname.Status.COMPLETED)
        movement = StockMovement.objects.get(management_stock_item__management_stock=record)
        self.assertEqual(movement.movement_type, MovementType.OPNAME_ADJUSTMENT)
        self.assertEqual(movement.quantity_change, -8)
        self.assertEqual(movement.stock_opname_item, self.opname.items.get())

    def test_opname_can_only_be_applied_once(self):
        ManagementStockService.create_management_stock(
            ManagementStock.Status.OPNAME_ADJUSTMENT, stock_opname_id=self.opname.id
        )

        with self.assertRaises(AlreadyConsumedError):
            ManagementStockService.create_management_stock(
                ManagementStock.Status.OPNAME_ADJUSTMENT, stock_opname_id=self.opname.id
            )
        with self.assertRaises(AlreadyConsumedError):
            StockOpnameService.update_stock_opname(self.opname.id, notes='late edit')
        with self.assertRaises(AlreadyConsumedError):
            StockOpnameService.delete_stock_opname(self.opname.id)

        self.widget.refresh_from_db()
        self.assertEqual(self.widget.current_stock, 92)

    def test_completed_opname_cannot_be_applied(self):
        matching = StockOpnameService.create_stock_opname(
            [{'product_id': self.widget.id, 'physical_stock': 100}]
        )
        with self.assertRaises(InvalidEntityStateError):
            ManagementStockService.create_management_stock(
                ManagementStock.Status.OPNAME_ADJUSTMENT, stock_opname_id=matching.id
            )

    def test_adjustment_requires_opname(self):
        with self.assertRaises(ValidationError):
            ManagementStockService.create_management_stock(ManagementStock.Status.OPNAME_ADJUSTMENT)

    def test_opname_adjustment_is_not_editable(self):
        record = ManagementStockService.create_management_stock(
            ManagementStock.Status.OPNAME_ADJUSTMENT, stock_opname_id=self.opname.id
        )
        with self.assertRaises(InvalidEntityStateError):
            ManagementStockService.update_management_stock(record.id, notes='edit')

    def test_delete_adjustment_reopens_opname(self):
        record = ManagementStockService.create_management_stock(
            ManagementStock.Status.OPNAME_ADJUSTMENT, stock_opname_id=self.opname.id
        )

        ManagementStockService.delete_management_stock(record.id)

        self.widget.refresh_from_db()
        self.opname.refresh_from_db()
        self.assertEqual(self.widget.current_stock, 100)
        self.assertEqual(self.opname.status, StockOpname.Status.RECONCILED)
        self.assertFalse(self.opname.is_consumed)
        self.assertEqual(StockLedger.replay_balance(self.widget.id), 100)


class ManagementStockTestCase(TestCase):

    def setUp(self):
        self.widget = make_product('PRD-001', stock=10)

    def stock(self):
        self.widget.refresh_from_db()
        return self.widget.current_stock

    def test_stock_in(self):
        record = ManagementStockService.create_management_stock(
            ManagementStock.Status.IN, items=[{'product_id': self.widget.id, 'quantity': 5}]
        )
        self.assertEqual(self.stock(), 15)
        movement = StockMovement.objects.get(management_stock_item__management_stock=record)
        self.assertEqual(movement.movement_type, MovementType.ADJUSTMENT_IN)
        self.assertEqual(movement.reference, f'Stock Management #{record.code}')

    def test_stock_out(self):
        ManagementStockService.create_management_stock(
            ManagementStock.Status.OUT, items=[{'product_id': self.widget.id, 'quantity': 4}]
        )
        self.assertEqual(self.stock(), 6)

    def test_stock_out_refuses_negative(self):
        with self.assertRaises(InsufficientStockError):
            ManagementStockService.create_management_stock(
                ManagementStock.Status.OUT, items=[{'product_id': self.widget.id, 'quantity': 11}]
            )
        self.assertEqual(self.stock(), 10)
        self.assertFalse(ManagementStock.objects.exists())

    def test_items_required(self):
        with self.assertRaises(ValidationError):
            ManagementStockService.create_management_stock(ManagementStock.Status.IN, items=[])
        with self.assertRaises(ValidationError):
            ManagementStockService.create_management_stock(
                ManagementStock.Status.IN, items=[{'product_id': self.widget.id, 'quantity': -2}]
            )

    def test_update_replaces_items(self):
        record = ManagementStockService.create_management_stock(
            ManagementStock.Status.IN, items=[{'product_id': self.widget.id, 'quantity': 5}]
        )

        ManagementStockService.update_management_stock(
            record.id, items=[{'product_id': self.widget.id, 'quantity': 2}]
        )

        self.assertEqual(self.stock(), 12)
        self.assertEqual(record.items.count(), 1)
        self.assertEqual(StockLedger.replay_balance(self.widget.id), 12)

    def test_update_flips_direction(self):
        record = ManagementStockService.create_management_stock(
            ManagementStock.Status.IN, items=[{'product_id': self.widget.id, 'quantity': 5}]
        )

        ManagementStockService.update_management_stock(record.id, status=ManagementStock.Status.OUT)

        self.assertEqual(self.stock(), 5)

    def test_delete_undoes_movements(self):
        record = ManagementStockService.create_management_stock(
            ManagementStock.Status.IN, items=[{'product_id': self.widget.id, 'quantity': 5}]
        )

        ManagementStockService.delete_management_stock(record.id)

        self.assertEqual(self.stock(), 10)
        self.assertFalse(ManagementStock.objects.filter(pk=record.pk).exists())

    def test_delete_refused_when_stock_consumed(self):
        record = ManagementStockService.create_management_stock(
            ManagementStock.Status.IN, items=[{'product_id': self.widget.id, 'quantity': 5}]
        )
        ManagementStockService.create_management_stock(
            ManagementStock.Status.OUT, items=[{'product_id': self.widget.id, 'quantity': 12}]
        )

        with self.assertRaises(InsufficientStockError):
            ManagementStockService.delete_management_stock(record.id)
        self.assertEqual(self.stock(), 3)

    def test_non_numeric_product_rejected(self):
        with self.assertRaises(ValidationError):
            ManagementStockService.create_management_stock(
                ManagementStock.Status.IN, items=[{'product_id': 'abc', 'quantity': 1}]
            )
        self.assertEqual(self.stock(), 10)
        self.assertFalse(ManagementStock.objects.exists())

    def test_update_announces_removed_products(self):
        gadget = make_product('PRD-002', stock=0)
        record = ManagementStockService.create_management_stock(
            ManagementStock.Status.IN, items=[
                {'product_id': self.widget.id, 'quantity': 5},
                {'product_id': gadget.id, 'quantity': 5},
            ]
        )

        with patch('ledger.broadcast.send_event') as send_event:
            with self.captureOnCommitCallbacks(execute=True):
                ManagementStockService.update_management_stock(
                    record.id, items=[{'product_id': self.widget.id, 'quantity': 2}]
                )

        event_type, payload = send_event.call_args.args
        self.assertEqual(event_type, broadcast.STOCK_CHANGED)
        stocks = {entry['code']: entry['current_stock'] for entry in payload['products']}
        self.assertEqual(stocks, {'PRD-001': 12, 'PRD-002': 0})
        self.assertEqual(len(payload['products']), 2)
