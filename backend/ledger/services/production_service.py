"""
Production Service

Production logs add finished goods to stock, one PRODUCTION_IN movement per
item. Editing a log undoes its movements and applies the new items; deleting
it undoes them. Both abort when the produced stock has already been consumed.
"""

import logging
from typing import Dict, List, Optional

from django.db import transaction
from django.utils import timezone

from ledger import broadcast
from ledger.choices import MovementType
from ledger.models import ProductionLog, ProductionLogItem, StockMovement
from ledger.services.stock_ledger import StockChange, StockLedger, normalize_items
from utils.constants import REFERENCE_PRODUCTION
from utils.exceptions import EntityNotFoundError

logger = logging.getLogger(__name__)


class ProductionService:

    @staticmethod
    def _lock(production_log_id: int) -> ProductionLog:
        try:
            return ProductionLog.objects.select_for_update().get(pk=production_log_id)
        except ProductionLog.DoesNotExist:
            raise EntityNotFoundError(f'Production log {production_log_id} not found')

    @staticmethod
    def _apply_items(log: ProductionLog, items: List[Dict], performed_by: str) -> list:
        StockLedger.lock_products(item['product_id'] for item in items)
        movements = []
        for item in items:
            line = ProductionLogItem.objects.create(
                production_log=log,
                product_id=item['product_id'],
                quantity=item['quantity'],
                notes=item['notes'],
            )
            movements.append(StockLedger.apply(
                item['product_id'],
                StockChange.inbound(MovementType.PRODUCTION_IN, item['quantity']),
                reference=REFERENCE_PRODUCTION.format(id=log.id),
                performed_by=performed_by,
                notes=item['notes'],
                production_log_item=line,
            ))
        return movements

    @staticmethod
    def _undo_items(log: ProductionLog) -> list:
        movements = list(
            StockMovement.objects.filter(production_log_item__production_log=log).order_by('id')
        )
        StockLedger.lock_products(movement.product_id for movement in movements)
        return [StockLedger.undo(movement) for movement in movements]

    @staticmethod
    def create_production_log(
        items: List[Dict],
        production_date=None,
        notes: str = '',
        produced_by: str = ''
    ) -> ProductionLog:
        """
        Record produced goods and add them to stock.

        Args:
            items: ``[{'product_id', 'quantity', 'notes'?}]``, quantities > 0
        """
        items = normalize_items(items)

        with transaction.atomic():
            log = ProductionLog.objects.create(
                production_date=production_date or timezone.now(),
                notes=notes,
                produced_by=produced_by,
            )
            movements = ProductionService._apply_items(log, items, produced_by)
            broadcast.stock_changed([movement.product for movement in movements])

        logger.info(f"Recorded production #{log.id} ({len(items)} items)")
        return log

    @staticmethod
    def update_production_log(
        production_log_id: int,
        items: Optional[List[Dict]] = None,
        production_date=None,
        notes: Optional[str] = None,
        performed_by: str = ''
    ) -> ProductionLog:
        if items is not None:
            items = normalize_items(items)

        with transaction.atomic():
            log = ProductionService._lock(production_log_id)

            if items is not None:
                undone = ProductionService._undo_items(log)
                log.items.all().delete()
                movements = ProductionService._apply_items(log, items, performed_by or log.produced_by)
                broadcast.stock_changed(undone + [movement.product for movement in movements])

            if production_date is not None:
                log.production_date = production_date
            if notes is not None:
                log.notes = notes
            log.save()

        logger.info(f"Updated production #{log.id}")
        return log

    @staticmethod
    def delete_production_log(production_log_id: int) -> None:
        """
        Delete a production log and take its goods back out of stock.

        Raises:
            InsufficientStockError: Some of the produced goods were already used
        """
        with transaction.atomic():
            log = ProductionService._lock(production_log_id)
            products = ProductionService._undo_items(log)
            log.delete()

            if products:
                broadcast.stock_changed(products)

        logger.info(f"Deleted production #{production_log_id}")
