"""
Stock Ledger Service

The only code allowed to change ``Product.current_stock``. Every change is
paired with exactly one StockMovement inside the caller's transaction:

1. Lock the product row (select_for_update)
2. Compute the new balance and refuse to go below zero
3. Persist the balance
4. Append the movement with before/after snapshots

Compensation comes in two forms, never combined for the same movement:
- reverse(): append one inverse movement linked through ``reversal_of``
- undo(): delete the movement and restore the balance (the causing document
  is being deleted)
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Sum

from ledger import broadcast
from ledger.choices import (
    INBOUND_MOVEMENT_TYPES,
    MANUAL_MOVEMENT_TYPES,
    MovementType,
    OUTBOUND_MOVEMENT_TYPES,
)
from ledger.models import Product, StockMovement
from utils.constants import REFERENCE_REVERSAL
from utils.exceptions import (
    EntityNotFoundError,
    InsufficientStockError,
    InvalidEntityStateError,
)

logger = logging.getLogger(__name__)


# Movement type used to compensate each type of movement.
REVERSAL_TYPES = {
    MovementType.SALES_OUT: MovementType.RETURN_IN,
    MovementType.PRODUCTION_IN: MovementType.ADJUSTMENT_OUT,
    MovementType.RETURN_IN: MovementType.ADJUSTMENT_OUT,
    MovementType.ADJUSTMENT_IN: MovementType.ADJUSTMENT_OUT,
    MovementType.ADJUSTMENT_OUT: MovementType.ADJUSTMENT_IN,
    MovementType.OPNAME_ADJUSTMENT: MovementType.OPNAME_ADJUSTMENT,
}

DOCUMENT_LINKS = (
    'delivery',
    'delivery_note',
    'production_log_item',
    'management_stock_item',
    'stock_opname_item',
)
ALLOWED_LINK_KWARGS = frozenset(DOCUMENT_LINKS) | {f'{name}_id' for name in DOCUMENT_LINKS}

# Manual deletion is limited to plain adjustments.
DELETABLE_MOVEMENT_TYPES = (
    MovementType.ADJUSTMENT_IN,
    MovementType.ADJUSTMENT_OUT,
)


@dataclass(frozen=True)
class StockChange:
    """
    A signed stock change tied to its movement type.

    The sign is checked against the type on construction, so an inbound type
    can never carry a negative change and vice versa.
    """
    movement_type: str
    amount: int

    def __post_init__(self):
        if self.movement_type not in MovementType.values:
            raise ValidationError({
                'movement_type': f'Unknown movement type: {self.movement_type}'
            })
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise ValidationError({'quantity': 'Quantity must be a whole number'})
        if self.amount == 0:
            raise ValidationError({'quantity': 'Quantity must not be zero'})
        if self.movement_type in INBOUND_MOVEMENT_TYPES and self.amount < 0:
            raise ValidationError({
                'quantity': f'{self.movement_type} cannot decrease stock'
            })
        if self.movement_type in OUTBOUND_MOVEMENT_TYPES and self.amount > 0:
            raise ValidationError({
                'quantity': f'{self.movement_type} cannot increase stock'
            })

    @property
    def quantity(self) -> int:
        return abs(self.amount)

    @classmethod
    def inbound(cls, movement_type: str, quantity: int) -> 'StockChange':
        cls._check_magnitude(quantity)
        return cls(movement_type, quantity)

    @classmethod
    def outbound(cls, movement_type: str, quantity: int) -> 'StockChange':
        cls._check_magnitude(quantity)
        return cls(movement_type, -quantity)

    @classmethod
    def opname(cls, difference: int) -> 'StockChange':
        return cls(MovementType.OPNAME_ADJUSTMENT, difference)

    @classmethod
    def for_type(cls, movement_type: str, quantity: int) -> 'StockChange':
        """
        Build a change from a movement type and a quantity.

        IN and OUT types take a positive magnitude; OPNAME_ADJUSTMENT takes the
        signed difference as-is.
        """
        if movement_type in INBOUND_MOVEMENT_TYPES:
            return cls.inbound(movement_type, quantity)
        if movement_type in OUTBOUND_MOVEMENT_TYPES:
            return cls.outbound(movement_type, quantity)
        return cls(movement_type, quantity)

    def inverse(self) -> 'StockChange':
        return StockChange(REVERSAL_TYPES[self.movement_type], -self.amount)

    @staticmethod
    def _check_magnitude(quantity):
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError({'quantity': 'Quantity must be greater than zero'})


class StockLedger:
    """Balance updater and movement recorder for product stock."""

    @staticmethod
    def lock_products(product_ids: Iterable[int]) -> Dict[int, Product]:
        """
        Row-lock every product in ascending id order.

        Two transactions touching the same products always lock them in the
        same order. Must be called inside transaction.atomic().
        """
        ids = sorted({int(pid) for pid in product_ids})
        products = {
            product.id: product
            for product in Product.objects.select_for_update().filter(id__in=ids).order_by('id')
        }
        missing = [pid for pid in ids if pid not in products]
        if missing:
            raise EntityNotFoundError(f'Product not found: {", ".join(str(pid) for pid in missing)}')
        return products

    @staticmethod
    def apply(
        product_id: int,
        change: StockChange,
        reference: str = '',
        performed_by: str = '',
        notes: str = '',
        reversal_of: Optional[StockMovement] = None,
        **links
    ) -> StockMovement:
        """
        Apply one stock change and record it.

        Args:
            product_id: Product to change
            change: Signed, typed change
            reference: Display reference for the movement
            performed_by: Actor id
            notes: Free text
            reversal_of: Movement this change compensates, if any
            **links: Owning document, as an instance (``delivery=...``) or an
                id (``delivery_id=...``)

        Returns:
            The created StockMovement; ``movement.product`` holds the locked,
            updated product.

        Raises:
            EntityNotFoundError: Product does not exist
            InsufficientStockError: Change would bring stock below zero
        """
        unknown = set(links) - ALLOWED_LINK_KWARGS
        if unknown:
            raise TypeError(f'Unknown movement links: {", ".join(sorted(unknown))}')

        with transaction.atomic():
            try:
                product = Product.objects.select_for_update().get(pk=product_id)
            except Product.DoesNotExist:
                raise EntityNotFoundError(f'Product {product_id} not found')

            before = product.current_stock
            after = before + change.amount
            if after < 0:
                logger.warning(
                    f"Rejected {change.movement_type} of {change.quantity} for {product.code}: "
                    f"only {before} in stock"
                )
                raise InsufficientStockError(
                    f'Insufficient stock for {product.code}. '
                    f'Available: {before}, requested: {change.quantity}'
                )

            product.current_stock = after
            product.save(update_fields=['current_stock', 'updated_at'])

            movement = StockMovement.objects.create(
                movement_type=change.movement_type,
                product=product,
                quantity=change.quantity,
                quantity_change=change.amount,
                quantity_before=before,
                quantity_after=after,
                reference=reference,
                notes=notes,
                performed_by=performed_by,
                reversal_of=reversal_of,
                **links
            )

        logger.info(
            f"{change.movement_type} {change.amount:+d} on {product.code}: {before} -> {after}"
        )
        return movement

    @staticmethod
    def reverse(
        movement: StockMovement,
        performed_by: str = '',
        reference: Optional[str] = None,
        notes: str = ''
    ) -> Optional[StockMovement]:
        """
        Append the inverse of ``movement`` and link it through ``reversal_of``.

        Idempotent: returns None when the movement has already been reversed.
        The reversal keeps the original's document links.
        """
        with transaction.atomic():
            original = StockMovement.objects.select_for_update().get(pk=movement.pk)

            if StockMovement.objects.filter(reversal_of=original).exists():
                logger.info(f"Movement {original.pk} already reversed, skipping")
                return None

            if original.reversal_of_id:
                raise InvalidEntityStateError(
                    f'Movement {original.pk} is itself a reversal and cannot be reversed'
                )

            change = StockChange(REVERSAL_TYPES[original.movement_type], -original.quantity_change)
            links = {f'{name}_id': getattr(original, f'{name}_id') for name in DOCUMENT_LINKS}

            return StockLedger.apply(
                original.product_id,
                change,
                reference=reference or REFERENCE_REVERSAL.format(reference=original.reference),
                performed_by=performed_by,
                notes=notes,
                reversal_of=original,
                **links
            )

    @staticmethod
    def undo(movement: StockMovement) -> Product:
        """
        Delete ``movement`` and take its change back out of the balance.

        Used when the document that caused the movement is deleted. Refuses to
        touch movements that are part of a reversal pair.

        Raises:
            InvalidEntityStateError: Movement was reversed or is a reversal
            InsufficientStockError: Stock has since been consumed below the
                amount the movement added
        """
        with transaction.atomic():
            try:
                original = StockMovement.objects.select_for_update().get(pk=movement.pk)
            except StockMovement.DoesNotExist:
                raise EntityNotFoundError(f'Stock movement {movement.pk} not found')

            if original.reversal_of_id or StockMovement.objects.filter(reversal_of=original).exists():
                raise InvalidEntityStateError(
                    f'Movement {original.pk} has been reversed and can no longer be undone'
                )

            product = Product.objects.select_for_update().get(pk=original.product_id)
            before = product.current_stock
            after = before - original.quantity_change
            if after < 0:
                logger.warning(
                    f"Rejected undo of movement {original.pk}: {product.code} has only {before} in stock"
                )
                raise InsufficientStockError(
                    f'Cannot undo {original.get_movement_type_display()} of {original.quantity} '
                    f'for {product.code}: only {before} left in stock'
                )

            product.current_stock = after
            product.save(update_fields=['current_stock', 'updated_at'])
            original.delete()

        logger.info(f"Undid movement {movement.pk} on {product.code}: {before} -> {after}")
        return product

    @staticmethod
    def replay_balance(product_id: int) -> int:
        """Sum of every recorded change for the product."""
        total = StockMovement.objects.filter(product_id=product_id).aggregate(
            total=Sum('quantity_change')
        )['total']
        return total or 0


class StockMovementService:
    """Manual adjustments made directly on the stock movement ledger."""

    @staticmethod
    def create_movement(
        product_id: int,
        movement_type: str,
        quantity: int,
        performed_by: str = '',
        reference: str = '',
        notes: str = ''
    ) -> StockMovement:
        """
        Record a manual stock adjustment.

        ADJUSTMENT_IN and ADJUSTMENT_OUT take a positive quantity;
        OPNAME_ADJUSTMENT takes the signed correction.
        """
        if movement_type not in MANUAL_MOVEMENT_TYPES:
            raise ValidationError({
                'movement_type': f'{movement_type} movements are created by their documents, not by hand'
            })

        change = StockChange.for_type(movement_type, quantity)

        with transaction.atomic():
            movement = StockLedger.apply(
                product_id,
                change,
                reference=reference or 'Manual adjustment',
                performed_by=performed_by,
                notes=notes,
            )
            broadcast.stock_changed([movement.product])

        return movement

    @staticmethod
    def delete_movement(movement_id: int) -> Product:
        """
        Delete a manual adjustment and restore the stock it moved.

        Only ADJUSTMENT_IN / ADJUSTMENT_OUT movements that no document owns
        can be deleted here.
        """
        with transaction.atomic():
            try:
                movement = StockMovement.objects.select_for_update().get(pk=movement_id)
            except StockMovement.DoesNotExist:
                raise EntityNotFoundError(f'Stock movement {movement_id} not found')

            if movement.movement_type not in DELETABLE_MOVEMENT_TYPES:
                raise InvalidEntityStateError(
                    f'{movement.get_movement_type_display()} movements cannot be deleted'
                )

            owner = next((name for name in DOCUMENT_LINKS if getattr(movement, f'{name}_id')), None)
            if owner:
                raise InvalidEntityStateError(
                    f'Movement {movement_id} belongs to a {owner.replace("_", " ")}; delete that instead'
                )

            product = StockLedger.undo(movement)
            broadcast.stock_changed([product])

        return product


def clean_product_id(item, index: int) -> int:
    """Product id of the ``index``-th input item, as an int."""
    product_id = item.get('product_id')
    if not product_id:
        raise ValidationError({'items': f'Item {index + 1}: product is required'})
    try:
        return int(product_id)
    except (TypeError, ValueError):
        raise ValidationError({'items': f'Item {index + 1}: product must be an id'})


def normalize_items(items, signed: bool = False) -> list:
    """
    Validate a list of ``{'product_id', 'quantity', 'notes'}`` dicts.

    Quantities must be positive whole numbers unless ``signed`` is set, in
    which case any non-zero whole number is accepted. Extra keys are kept.
    """
    if not items:
        raise ValidationError({'items': 'At least one item is required'})

    cleaned = []
    for index, item in enumerate(items):
        product_id = clean_product_id(item, index)
        quantity = item.get('quantity')
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise ValidationError({'items': f'Item {index + 1}: quantity must be a whole number'})
        if quantity == 0 or (quantity < 0 and not signed):
            raise ValidationError({'items': f'Item {index + 1}: quantity must be greater than zero'})
        cleaned.append({**item, 'product_id': product_id, 'quantity': quantity, 'notes': item.get('notes') or ''})
    return cleaned
