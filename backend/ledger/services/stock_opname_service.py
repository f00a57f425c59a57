"""
Stock Opname Service

Physical stock counts. An opname never moves stock by itself: it records what
was counted against what the system held, and a later OPNAME_ADJUSTMENT
(management stock) applies the differences.

Status:
- COMPLETED when every item matches the system
- RECONCILED when at least one item differs and is waiting to be applied
"""

import logging
from typing import Dict, List, Optional

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Prefetch
from django.utils import timezone

from ledger import status as ledger_status
from ledger.models import StockOpname, StockOpnameItem
from ledger.services.stock_ledger import StockLedger, clean_product_id
from utils.codes import generate_code
from utils.exceptions import AlreadyConsumedError, EntityNotFoundError

logger = logging.getLogger(__name__)


def _clean_count_items(items: List[Dict]) -> List[Dict]:
    if not items:
        raise ValidationError({'items': 'At least one counted item is required'})

    cleaned = []
    seen = set()
    for index, item in enumerate(items):
        product_id = clean_product_id(item, index)
        physical = item.get('physical_stock')
        system = item.get('system_stock')
        if product_id in seen:
            raise ValidationError({'items': f'Item {index + 1}: product counted twice'})
        if isinstance(physical, bool) or not isinstance(physical, int) or physical < 0:
            raise ValidationError({'items': f'Item {index + 1}: physical stock must be zero or more'})
        if system is not None and (isinstance(system, bool) or not isinstance(system, int)):
            raise ValidationError({'items': f'Item {index + 1}: system stock must be a whole number'})
        seen.add(product_id)
        cleaned.append({
            'product_id': product_id,
            'physical_stock': physical,
            'system_stock': system,
            'notes': item.get('notes') or '',
        })
    return cleaned


class StockOpnameService:

    @staticmethod
    def _lock_opname(opname_id: int) -> StockOpname:
        try:
            return StockOpname.objects.select_for_update().get(pk=opname_id)
        except StockOpname.DoesNotExist:
            raise EntityNotFoundError(f'Stock opname {opname_id} not found')

    @staticmethod
    def _write_items(opname: StockOpname, items: List[Dict]):
        """
        Create the count items and re-derive the opname status.

        ``system_stock`` is snapshotted from the locked product unless the
        caller supplied it.
        """
        products = StockLedger.lock_products(item['product_id'] for item in items)
        differences = []
        for item in items:
            system_stock = item['system_stock']
            if system_stock is None:
                system_stock = products[item['product_id']].current_stock
            counted = StockOpnameItem.objects.create(
                opname=opname,
                product_id=item['product_id'],
                system_stock=system_stock,
                physical_stock=item['physical_stock'],
                notes=item['notes'],
            )
            differences.append(counted.difference)

        opname.status = ledger_status.opname_status(differences)

    @staticmethod
    def create_stock_opname(
        items: List[Dict],
        code: Optional[str] = None,
        opname_date=None,
        notes: str = '',
        conducted_by: str = ''
    ) -> StockOpname:
        """
        Record a physical count.

        Args:
            items: ``[{'product_id', 'physical_stock', 'system_stock'?, 'notes'?}]``

        Returns:
            The StockOpname, COMPLETED or RECONCILED
        """
        items = _clean_count_items(items)

        with transaction.atomic():
            opname = StockOpname.objects.create(
                code=code or generate_code('SO'),
                opname_date=opname_date or timezone.now(),
                notes=notes,
                conducted_by=conducted_by,
            )
            StockOpnameService._write_items(opname, items)
            opname.save()

        logger.info(f"Recorded stock opname {opname.code} ({opname.status}, {len(items)} items)")
        return opname

    @staticmethod
    def update_stock_opname(
        opname_id: int,
        items: Optional[List[Dict]] = None,
        opname_date=None,
        notes: Optional[str] = None
    ) -> StockOpname:
        """Replace the counted items; refused once an adjustment has applied the opname."""
        if items is not None:
            items = _clean_count_items(items)

        with transaction.atomic():
            opname = StockOpnameService._lock_opname(opname_id)
            if opname.is_consumed:
                raise AlreadyConsumedError(
                    f'Stock opname {opname.code} has already been applied and cannot be edited'
                )

            if items is not None:
                opname.items.all().delete()
                StockOpnameService._write_items(opname, items)
            if opname_date is not None:
                opname.opname_date = opname_date
            if notes is not None:
                opname.notes = notes
            opname.save()

        logger.info(f"Updated stock opname {opname.code} ({opname.status})")
        return opname

    @staticmethod
    def delete_stock_opname(opname_id: int) -> None:
        with transaction.atomic():
            opname = StockOpnameService._lock_opname(opname_id)
            if opname.is_consumed:
                raise AlreadyConsumedError(
                    f'Stock opname {opname.code} has already been applied and cannot be deleted'
                )
            code = opname.code
            opname.delete()

        logger.info(f"Deleted stock opname {code}")

    @staticmethod
    def reconciled_opnames():
        """RECONCILED opnames with only their non-zero items prefetched."""
        return StockOpname.objects.filter(
            status=StockOpname.Status.RECONCILED
        ).prefetch_related(
            Prefetch(
                'items',
                queryset=StockOpnameItem.objects.exclude(difference=0).select_related('product'),
                to_attr='differing_items',
            )
        )
