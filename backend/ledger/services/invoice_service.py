"""
Invoice Service

Creates invoices with totals fixed from their line items, manages the invoice
status, and owns the invoice side of the balance: every change to
``paid_amount`` goes through InvoiceBalance.apply().

Totals:
    subtotal = Σ (quantity × price - item discount)
    tax      = subtotal × tax_percentage / 100
    total    = subtotal + tax - discount
"""

import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, List, Optional

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from ledger import broadcast
from ledger.models import Customer, Invoice, InvoiceItem, Product
from utils.codes import generate_code
from utils.exceptions import (
    EntityNotFoundError,
    InvalidEntityStateError,
    InvalidStatusTransitionError,
    PaymentExceedsRemainingError,
)

logger = logging.getLogger(__name__)

CENTS = Decimal('0.01')


def to_money(value, field: str) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError({field: f'Invalid amount: {value}'})
    if not amount.is_finite():
        raise ValidationError({field: f'Invalid amount: {value}'})
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def calculate_totals(items: List[Dict], tax_percentage: Decimal, discount: Decimal) -> Dict[str, Decimal]:
    subtotal = sum(
        (item['quantity'] * item['price'] - item['discount'] for item in items),
        Decimal('0.00')
    )
    tax = (subtotal * tax_percentage / Decimal('100')).quantize(CENTS, rounding=ROUND_HALF_UP)
    return {
        'subtotal': subtotal,
        'tax': tax,
        'total_amount': subtotal + tax - discount,
    }


class InvoiceBalance:
    """Balance updater for an invoice's paid amount."""

    @staticmethod
    def apply(invoice_id: int, delta: Decimal) -> Invoice:
        """
        Move ``paid_amount`` by ``delta`` under a row lock.

        Remaining amount and payment status are re-derived on save.

        Raises:
            PaymentExceedsRemainingError: paid would exceed the total
            InvalidEntityStateError: paid would drop below zero
        """
        with transaction.atomic():
            try:
                invoice = Invoice.objects.select_for_update().get(pk=invoice_id)
            except Invoice.DoesNotExist:
                raise EntityNotFoundError(f'Invoice {invoice_id} not found')

            new_paid = invoice.paid_amount + delta
            if new_paid > invoice.total_amount:
                raise PaymentExceedsRemainingError(
                    f'Payment amount ({delta}) cannot exceed remaining amount ({invoice.remaining_amount})'
                )
            if new_paid < 0:
                raise InvalidEntityStateError(
                    f'Invoice {invoice.code} paid amount cannot drop below zero'
                )

            invoice.paid_amount = new_paid
            invoice.save()

        logger.info(
            f"Invoice {invoice.code} paid {invoice.paid_amount}/{invoice.total_amount} ({invoice.payment_status})"
        )
        return invoice


class InvoiceService:

    @staticmethod
    def create_invoice(
        items: List[Dict],
        customer_id: Optional[int] = None,
        invoice_type: str = Invoice.InvoiceType.PRODUCT,
        code: Optional[str] = None,
        status: str = Invoice.Status.DRAFT,
        tax_percentage=Decimal('0.00'),
        discount=Decimal('0.00'),
        invoice_date=None,
        due_date=None,
        use_delivery_note: bool = False,
        notes: str = '',
        created_by: str = ''
    ) -> Invoice:
        """
        Create an invoice and its line items.

        Args:
            items: ``[{'product_id', 'description', 'quantity', 'price', 'discount'}]``;
                product lines are required on PRODUCT invoices
            customer_id: Owning customer
            invoice_type: PRODUCT or SERVICE
            tax_percentage: Percentage applied to the subtotal
            discount: Invoice level discount, taken off after tax

        Returns:
            The created Invoice with paid_amount 0

        Raises:
            ValidationError: Malformed items or totals
            EntityNotFoundError: Customer or product does not exist
        """
        if invoice_type not in Invoice.InvoiceType.values:
            raise ValidationError({'invoice_type': f'Invalid invoice type: {invoice_type}'})
        if status == Invoice.Status.CANCELLED or status not in Invoice.Status.values:
            raise ValidationError({'status': f'Invalid initial status: {status}'})
        if not items:
            raise ValidationError({'items': 'At least one item is required'})

        tax_percentage = to_money(tax_percentage, 'tax_percentage')
        discount = to_money(discount, 'discount')
        if not Decimal('0') <= tax_percentage <= Decimal('100'):
            raise ValidationError({'tax_percentage': 'Tax percentage must be between 0 and 100'})
        if discount < 0:
            raise ValidationError({'discount': 'Discount cannot be negative'})

        lines = []
        for index, item in enumerate(items):
            quantity = item.get('quantity')
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
                raise ValidationError({'items': f'Item {index + 1}: quantity must be greater than zero'})
            price = to_money(item.get('price', 0), 'items')
            line_discount = to_money(item.get('discount') or 0, 'items')
            if price < 0 or line_discount < 0:
                raise ValidationError({'items': f'Item {index + 1}: price and discount cannot be negative'})
            product_id = item.get('product_id')
            if invoice_type == Invoice.InvoiceType.PRODUCT and not product_id:
                raise ValidationError({'items': f'Item {index + 1}: product invoices need a product on every line'})
            lines.append({
                'product_id': product_id,
                'description': item.get('description') or '',
                'quantity': quantity,
                'price': price,
                'discount': line_discount,
            })

        totals = calculate_totals(lines, tax_percentage, discount)
        if totals['total_amount'] < 0:
            raise ValidationError({'discount': 'Discount cannot exceed the invoice amount'})

        with transaction.atomic():
            customer = None
            if customer_id:
                try:
                    customer = Customer.objects.get(pk=customer_id)
                except Customer.DoesNotExist:
                    raise EntityNotFoundError(f'Customer {customer_id} not found')

            product_ids = {line['product_id'] for line in lines if line['product_id']}
            products = Product.objects.in_bulk(product_ids)
            missing = product_ids - set(products)
            if missing:
                raise EntityNotFoundError(
                    f'Product not found: {", ".join(str(pid) for pid in sorted(missing))}'
                )

            invoice = Invoice.objects.create(
                code=code or generate_code('INV'),
                customer=customer,
                invoice_type=invoice_type,
                status=status,
                invoice_date=invoice_date or timezone.now(),
                due_date=due_date,
                use_delivery_note=use_delivery_note,
                tax_percentage=tax_percentage,
                discount=discount,
                paid_amount=Decimal('0.00'),
                notes=notes,
                created_by=created_by,
                **totals
            )
            for line in lines:
                InvoiceItem.objects.create(invoice=invoice, **line)

            broadcast.invoice_updated(invoice)

        logger.info(f"Created invoice {invoice.code} for {invoice.total_amount}")
        return invoice

    @staticmethod
    def update_invoice_status(invoice_id: int, status: str, performed_by: str = '') -> Invoice:
        """
        Change an invoice's status.

        Cancelled invoices are final. Cancelling is refused while payments are
        recorded or a delivery still holds stock for the invoice.
        """
        if status not in Invoice.Status.values:
            raise ValidationError({'status': f'Invalid invoice status: {status}'})

        with transaction.atomic():
            try:
                invoice = Invoice.objects.select_for_update().get(pk=invoice_id)
            except Invoice.DoesNotExist:
                raise EntityNotFoundError(f'Invoice {invoice_id} not found')

            if invoice.status == Invoice.Status.CANCELLED:
                raise InvalidStatusTransitionError(
                    f'Invoice {invoice.code} is cancelled and cannot change status'
                )

            if status == Invoice.Status.CANCELLED:
                if invoice.payments.exists():
                    raise InvalidEntityStateError(
                        f'Invoice {invoice.code} has payments; delete them before cancelling'
                    )
                if invoice.active_delivery_exists():
                    raise InvalidEntityStateError(
                        f'Invoice {invoice.code} has an active delivery; cancel it first'
                    )

            old_status = invoice.status
            invoice.status = status
            invoice.save()
            broadcast.invoice_updated(invoice)

        logger.info(f"Invoice {invoice.code} status {old_status} -> {status} by {performed_by or 'system'}")
        return invoice

    @staticmethod
    def delete_invoice(invoice_id: int) -> None:
        """Delete an invoice that no payment, delivery or delivery note refers to."""
        with transaction.atomic():
            try:
                invoice = Invoice.objects.select_for_update().get(pk=invoice_id)
            except Invoice.DoesNotExist:
                raise EntityNotFoundError(f'Invoice {invoice_id} not found')

            if (
                invoice.payments.exists()
                or invoice.deliveries.exists()
                or invoice.delivery_notes.exists()
            ):
                raise InvalidEntityStateError(
                    f'Invoice {invoice.code} has payments or deliveries and cannot be deleted'
                )

            code = invoice.code
            invoice.delete()

        logger.info(f"Deleted invoice {code}")
