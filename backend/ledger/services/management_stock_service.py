"""
Management Stock Service

Manual stock adjustments:
- IN                → ADJUSTMENT_IN  (+quantity)
- OUT               → ADJUSTMENT_OUT (-quantity, never below zero)
- OPNAME_ADJUSTMENT → OPNAME_ADJUSTMENT (signed difference from a RECONCILED
                      stock opname, which is then marked COMPLETED)

Deleting an adjustment undoes its movements; deleting an opname adjustment
returns the opname to RECONCILED so it can be applied again.
"""

import logging
from typing import Dict, List, Optional

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from ledger import broadcast
from ledger.choices import MovementType
from ledger.models import ManagementStock, ManagementStockItem, StockMovement, StockOpname
from ledger.services.stock_ledger import StockChange, StockLedger, normalize_items
from utils.codes import generate_code
from utils.constants import REFERENCE_MANAGEMENT_STOCK
from utils.exceptions import (
    AlreadyConsumedError,
    EntityNotFoundError,
    InvalidEntityStateError,
)

logger = logging.getLogger(__name__)

MOVEMENT_TYPE_FOR_STATUS = {
    ManagementStock.Status.IN: MovementType.ADJUSTMENT_IN,
    ManagementStock.Status.OUT: MovementType.ADJUSTMENT_OUT,
    ManagementStock.Status.OPNAME_ADJUSTMENT: MovementType.OPNAME_ADJUSTMENT,
}


class ManagementStockService:

    @staticmethod
    def _lock(management_stock_id: int) -> ManagementStock:
        try:
            return ManagementStock.objects.select_for_update().get(pk=management_stock_id)
        except ManagementStock.DoesNotExist:
            raise EntityNotFoundError(f'Management stock {management_stock_id} not found')

    @staticmethod
    def _opname_items(opname: StockOpname, items: Optional[List[Dict]]) -> List[Dict]:
        """Adjustment lines for an opname, derived from its differences when not given."""
        if items:
            items = normalize_items(items, signed=True)
            known = {str(item_id) for item_id in opname.items.values_list('id', flat=True)}
            for item in items:
                opname_item_id = item.get('stock_opname_item_id')
                if opname_item_id and str(opname_item_id) not in known:
                    raise ValidationError({
                        'items': f'Opname item {opname_item_id} does not belong to opname {opname.code}'
                    })
            return items

        derived = [
            {
                'product_id': item.product_id,
                'quantity': item.difference,
                'stock_opname_item_id': item.id,
                'notes': item.notes,
            }
            for item in opname.items.exclude(difference=0).order_by('id')
        ]
        if not derived:
            raise InvalidEntityStateError(f'Stock opname {opname.code} has no differences to apply')
        return derived

    @staticmethod
    def _apply_items(record: ManagementStock, items: List[Dict], performed_by: str) -> list:
        movement_type = MOVEMENT_TYPE_FOR_STATUS[record.status]
        StockLedger.lock_products(item['product_id'] for item in items)
        movements = []
        for item in items:
            line = ManagementStockItem.objects.create(
                management_stock=record,
                product_id=item['product_id'],
                quantity=item['quantity'],
                stock_opname_item_id=item.get('stock_opname_item_id'),
                notes=item['notes'],
            )
            movements.append(StockLedger.apply(
                item['product_id'],
                StockChange.for_type(movement_type, item['quantity']),
                reference=REFERENCE_MANAGEMENT_STOCK.format(code=record.code),
                performed_by=performed_by,
                notes=item['notes'],
                management_stock_item=line,
                stock_opname_item_id=item.get('stock_opname_item_id'),
            ))
        return movements

    @staticmethod
    def _undo_items(record: ManagementStock) -> list:
        movements = list(
            StockMovement.objects.filter(management_stock_item__management_stock=record).order_by('id')
        )
        StockLedger.lock_products(movement.product_id for movement in movements)
        return [StockLedger.undo(movement) for movement in movements]

    @staticmethod
    def create_management_stock(
        status: str,
        items: Optional[List[Dict]] = None,
        stock_opname_id: Optional[int] = None,
        code: Optional[str] = None,
        management_date=None,
        notes: str = '',
        produced_by: str = ''
    ) -> ManagementStock:
        """
        Record a manual adjustment and move the stock.

        Args:
            status: IN, OUT or OPNAME_ADJUSTMENT
            items: ``[{'product_id', 'quantity', 'notes'?}]``; optional for
                OPNAME_ADJUSTMENT, where they default to the opname's differences
            stock_opname_id: Required for OPNAME_ADJUSTMENT

        Raises:
            ValidationError: Malformed items or missing opname
            InvalidEntityStateError: Opname is not RECONCILED
            AlreadyConsumedError: Opname has already been applied
            InsufficientStockError: An OUT line cannot be covered
        """
        if status not in ManagementStock.Status.values:
            raise ValidationError({'status': f'Invalid management stock status: {status}'})

        is_opname = status == ManagementStock.Status.OPNAME_ADJUSTMENT
        if is_opname and not stock_opname_id:
            raise ValidationError({'stock_opname': 'Opname adjustments must reference a stock opname'})
        if not is_opname:
            items = normalize_items(items)

        with transaction.atomic():
            opname = None
            if is_opname:
                try:
                    opname = StockOpname.objects.select_for_update().get(pk=stock_opname_id)
                except StockOpname.DoesNotExist:
                    raise EntityNotFoundError(f'Stock opname {stock_opname_id} not found')

                if opname.is_consumed:
                    raise AlreadyConsumedError(f'Stock opname {opname.code} has already been applied')
                if opname.status != StockOpname.Status.RECONCILED:
                    raise InvalidEntityStateError(
                        f'Stock opname {opname.code} must be RECONCILED (currently {opname.status})'
                    )
                items = ManagementStockService._opname_items(opname, items)

            record = ManagementStock.objects.create(
                code=code or generate_code('MS'),
                status=status,
                stock_opname=opname,
                management_date=management_date or timezone.now(),
                notes=notes,
                produced_by=produced_by,
            )
            movements = ManagementStockService._apply_items(record, items, produced_by)

            if opname:
                opname.status = StockOpname.Status.COMPLETED
                opname.save()

            broadcast.stock_changed([movement.product for movement in movements])

        logger.info(f"Recorded management stock {record.code} ({status}, {len(items)} items)")
        return record

    @staticmethod
    def update_management_stock(
        management_stock_id: int,
        items: Optional[List[Dict]] = None,
        status: Optional[str] = None,
        management_date=None,
        notes: Optional[str] = None,
        performed_by: str = ''
    ) -> ManagementStock:
        """
        Edit an IN / OUT adjustment.

        New items replace the old ones: the old movements are undone and the
        new ones applied in the same transaction. Opname adjustments cannot be
        edited; delete and re-apply them instead.
        """
        if status is not None and status not in (ManagementStock.Status.IN, ManagementStock.Status.OUT):
            raise ValidationError({'status': f'Cannot change management stock to {status}'})
        if items is not None:
            items = normalize_items(items)

        with transaction.atomic():
            record = ManagementStockService._lock(management_stock_id)
            if record.status == ManagementStock.Status.OPNAME_ADJUSTMENT:
                raise InvalidEntityStateError(
                    f'{record.code} is an opname adjustment and cannot be edited'
                )

            products = []
            if items is not None or (status is not None and status != record.status):
                if items is None:
                    items = [
                        {'product_id': line.product_id, 'quantity': line.quantity, 'notes': line.notes}
                        for line in record.items.order_by('id')
                    ]
                undone = ManagementStockService._undo_items(record)
                record.items.all().delete()
                if status is not None:
                    record.status = status
                movements = ManagementStockService._apply_items(record, items, performed_by)
                products = undone + [movement.product for movement in movements]

            if management_date is not None:
                record.management_date = management_date
            if notes is not None:
                record.notes = notes
            record.save()

            if products:
                broadcast.stock_changed(products)

        logger.info(f"Updated management stock {record.code}")
        return record

    @staticmethod
    def delete_management_stock(management_stock_id: int) -> None:
        with transaction.atomic():
            record = ManagementStockService._lock(management_stock_id)

            opname = None
            if record.stock_opname_id:
                opname = StockOpname.objects.select_for_update().get(pk=record.stock_opname_id)

            products = ManagementStockService._undo_items(record)
            code = record.code
            record.delete()

            if opname:
                opname.status = StockOpname.Status.RECONCILED
                opname.save()

            if products:
                broadcast.stock_changed(products)

        logger.info(f"Deleted management stock {code}")
