"""
Tests for production logs.
"""

from unittest.mock import patch

from django.core.exceptions import ValidationError
from django.test import TestCase

from ledger import broadcast
from ledger.choices import MovementType
from ledger.models import ProductionLog, StockMovement
from ledger.services import ProductionService, StockLedger
from ledger.services.stock_ledger import StockChange
from ledger.tests.helpers import make_product
from utils.exceptions import EntityNotFoundError, InsufficientStockError


class ProductionServiceTestCase(TestCase):

    def setUp(self):
        self.widget = make_product('PRD-001', stock=10)
        self.gadget = make_product('PRD-002', stock=0)

    def stock(self, product):
        product.refresh_from_db()
        return product.current_stock

    def test_create_adds_stock(self):
        log = ProductionService.create_production_log(
            [
                {'product_id': self.widget.id, 'quantity': 5},
                {'product_id': self.gadget.id, 'quantity': 2, 'notes': 'Batch B'},
            ],
            produced_by='line-1',
        )

        self.assertEqual(self.stock(self.widget), 15)
        self.assertEqual(self.stock(self.gadget), 2)
        movements = StockMovement.objects.filter(production_log_item__production_log=log)
        self.assertEqual(movements.count(), 2)
        movement = movements.get(product=self.gadget)
        self.assertEqual(movement.movement_type, MovementType.PRODUCTION_IN)
        self.assertEqual(movement.reference, f'Production #{log.id}')
        self.assertEqual(movement.performed_by, 'line-1')
        self.assertEqual(movement.notes, 'Batch B')

    def test_items_must_be_positive(self):
        with self.assertRaises(ValidationError):
            ProductionService.create_production_log([])
        with self.assertRaises(ValidationError):
            ProductionService.create_production_log([{'product_id': self.widget.id, 'quantity': 0}])
        self.assertFalse(ProductionLog.objects.exists())

    def test_update_replaces_items(self):
        log = ProductionService.create_production_log([{'product_id': self.widget.id, 'quantity': 5}])

        ProductionService.update_production_log(
            log.id, items=[{'product_id': self.gadget.id, 'quantity': 3}], notes='Corrected'
        )

        log.refresh_from_db()
        self.assertEqual(log.notes, 'Corrected')
        self.assertEqual(self.stock(self.widget), 10)
        self.assertEqual(self.stock(self.gadget), 3)
        self.assertEqual(StockLedger.replay_balance(self.widget.id), 10)
        self.assertEqual(StockLedger.replay_balance(self.gadget.id), 3)

    def test_update_notes_only_keeps_stock(self):
        log = ProductionService.create_production_log([{'product_id': self.widget.id, 'quantity': 5}])
        ProductionService.update_production_log(log.id, notes='Night shift')
        self.assertEqual(self.stock(self.widget), 15)

    def test_delete_undoes_movements(self):
        log = ProductionService.create_production_log([{'product_id': self.gadget.id, 'quantity': 4}])

        ProductionService.delete_production_log(log.id)

        self.assertEqual(self.stock(self.gadget), 0)
        self.assertFalse(ProductionLog.objects.filter(pk=log.pk).exists())
        self.assertFalse(StockMovement.objects.filter(product=self.gadget).exists())

    def test_delete_after_goods_were_used(self):
        log = ProductionService.create_production_log([{'product_id': self.gadget.id, 'quantity': 4}])
        StockLedger.apply(self.gadget.id, StockChange.outbound(MovementType.SALES_OUT, 3))

        with self.assertRaises(InsufficientStockError):
            ProductionService.delete_production_log(log.id)

        self.assertEqual(self.stock(self.gadget), 1)
        self.assertTrue(ProductionLog.objects.filter(pk=log.pk).exists())

    def test_missing_log(self):
        with self.assertRaises(EntityNotFoundError):
            ProductionService.delete_production_log(999999)

    def test_update_announces_dropped_lines(self):
        log = ProductionService.create_production_log([
            {'product_id': self.widget.id, 'quantity': 5},
            {'product_id': self.gadget.id, 'quantity': 4},
        ])

        with patch('ledger.broadcast.send_event') as send_event:
            with self.captureOnCommitCallbacks(execute=True):
                ProductionService.update_production_log(
                    log.id, items=[{'product_id': self.widget.id, 'quantity': 1}]
                )

        event_type, payload = send_event.call_args.args
        self.assertEqual(event_type, broadcast.STOCK_CHANGED)
        stocks = {entry['code']: entry['current_stock'] for entry in payload['products']}
        self.assertEqual(stocks, {'PRD-001': 11, 'PRD-002': 0})
        self.assertEqual(len(payload['products']), 2)
