"""
Delivery Service

Deliveries and delivery notes both ship an invoice's product lines. They take
one SALES_OUT movement per product line when created and follow the same
state machine:

    PENDING → IN_TRANSIT → DELIVERED
        ↓          ↓
    CANCELLED   RETURNED

Entering CANCELLED or RETURNED appends one RETURN_IN for every SALES_OUT that
has not been reversed yet. Deleting a PENDING document deletes its SALES_OUT
movements instead; a CANCELLED document has already been compensated.

An invoice can have at most one active (not CANCELLED / RETURNED) delivery or
delivery note at a time.
"""

import logging
from typing import Optional, Type, Union

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from ledger import broadcast
from ledger import status as ledger_status
from ledger.choices import MovementType
from ledger.models import Delivery, DeliveryNote, DeliveryNoteItem, Invoice
from ledger.services.stock_ledger import StockChange, StockLedger
from utils.codes import generate_code
from utils.constants import REFERENCE_DELIVERY, REFERENCE_DELIVERY_NOTE
from utils.exceptions import (
    DuplicateDeliveryError,
    EntityNotFoundError,
    InvalidEntityStateError,
    InvalidStatusTransitionError,
)

logger = logging.getLogger(__name__)

DeliveryDocument = Union[Delivery, DeliveryNote]

DELETABLE_STATUSES = (Delivery.Status.PENDING, Delivery.Status.CANCELLED)


class DeliveryService:

    @staticmethod
    def _lock_invoice(invoice_id: int) -> Invoice:
        try:
            return Invoice.objects.select_for_update().get(pk=invoice_id)
        except Invoice.DoesNotExist:
            raise EntityNotFoundError(f'Invoice {invoice_id} not found')

    @staticmethod
    def _lock_document(model: Type, document_id: int) -> DeliveryDocument:
        try:
            return model.objects.select_for_update().get(pk=document_id)
        except model.DoesNotExist:
            raise EntityNotFoundError(f'{model._meta.verbose_name.title()} {document_id} not found')

    @staticmethod
    def _product_lines(invoice: Invoice):
        lines = list(invoice.items.filter(product__isnull=False).order_by('id'))
        if not lines:
            raise InvalidEntityStateError(f'Invoice {invoice.code} has no product lines to deliver')
        return lines

    @staticmethod
    def _check_no_active_delivery(invoice: Invoice):
        if invoice.active_delivery_exists():
            logger.warning(f"Rejected second active delivery for invoice {invoice.code}")
            raise DuplicateDeliveryError(
                f'Invoice {invoice.code} already has an active delivery or delivery note'
            )

    @staticmethod
    def _reference(document: DeliveryDocument) -> str:
        if isinstance(document, DeliveryNote):
            return REFERENCE_DELIVERY_NOTE.format(code=document.code)
        return REFERENCE_DELIVERY.format(code=document.code)

    @staticmethod
    def _link(document: DeliveryDocument) -> dict:
        if isinstance(document, DeliveryNote):
            return {'delivery_note': document}
        return {'delivery': document}

    @staticmethod
    def _take_stock(document: DeliveryDocument, lines, performed_by: str) -> list:
        """One SALES_OUT per invoice line, all products locked up front."""
        StockLedger.lock_products(line.product_id for line in lines)
        movements = []
        for line in lines:
            movements.append(StockLedger.apply(
                line.product_id,
                StockChange.outbound(MovementType.SALES_OUT, line.quantity),
                reference=DeliveryService._reference(document),
                performed_by=performed_by,
                **DeliveryService._link(document)
            ))
        return movements

    @staticmethod
    def create_delivery(
        invoice_id: int,
        delivery_date=None,
        helper: str = '',
        notes: str = '',
        code: Optional[str] = None,
        performed_by: str = ''
    ) -> Delivery:
        """
        Create a delivery for a SENT product invoice and take its stock out.

        Raises:
            EntityNotFoundError: Invoice does not exist
            InvalidEntityStateError: Invoice is not a SENT product invoice
            DuplicateDeliveryError: Invoice already has an active delivery
            InsufficientStockError: A product line cannot be covered
        """
        with transaction.atomic():
            invoice = DeliveryService._lock_invoice(invoice_id)

            if invoice.invoice_type != Invoice.InvoiceType.PRODUCT:
                raise InvalidEntityStateError(f'Invoice {invoice.code} is not a product invoice')
            if invoice.status != Invoice.Status.SENT:
                raise InvalidEntityStateError(
                    f'Invoice {invoice.code} must be SENT before it can be delivered (currently {invoice.status})'
                )
            DeliveryService._check_no_active_delivery(invoice)
            lines = DeliveryService._product_lines(invoice)

            delivery = Delivery.objects.create(
                code=code or generate_code('DLV'),
                invoice=invoice,
                delivery_date=delivery_date or timezone.now(),
                helper=helper,
                notes=notes,
            )
            movements = DeliveryService._take_stock(delivery, lines, performed_by)

            broadcast.stock_changed([movement.product for movement in movements])
            broadcast.delivery_updated(delivery)

        logger.info(f"Created delivery {delivery.code} for invoice {invoice.code}")
        return delivery

    @staticmethod
    def create_delivery_note(
        invoice_id: int,
        delivery_date=None,
        driver_name: str = '',
        vehicle_number: str = '',
        notes: str = '',
        code: Optional[str] = None,
        warehouse_user: str = ''
    ) -> DeliveryNote:
        """
        Create a delivery note for a fully paid product invoice.

        The invoice must be a PRODUCT invoice flagged ``use_delivery_note`` with
        payment status PAID. One note item and one SALES_OUT are created per
        product line.
        """
        with transaction.atomic():
            invoice = DeliveryService._lock_invoice(invoice_id)

            if invoice.invoice_type != Invoice.InvoiceType.PRODUCT:
                raise InvalidEntityStateError(f'Invoice {invoice.code} is not a product invoice')
            if not invoice.use_delivery_note:
                raise InvalidEntityStateError(f'Invoice {invoice.code} does not ship through delivery notes')
            if invoice.payment_status != Invoice.PaymentStatus.PAID:
                raise InvalidEntityStateError(
                    f'Invoice {invoice.code} must be fully paid before issuing a delivery note'
                )
            DeliveryService._check_no_active_delivery(invoice)
            lines = DeliveryService._product_lines(invoice)

            note = DeliveryNote.objects.create(
                code=code or generate_code('DN'),
                invoice=invoice,
                customer_id=invoice.customer_id,
                delivery_date=delivery_date or timezone.now(),
                driver_name=driver_name,
                vehicle_number=vehicle_number,
                notes=notes,
                warehouse_user=warehouse_user,
            )
            DeliveryNoteItem.objects.bulk_create([
                DeliveryNoteItem(delivery_note=note, product_id=line.product_id, quantity=line.quantity)
                for line in lines
            ])
            movements = DeliveryService._take_stock(note, lines, warehouse_user)

            broadcast.stock_changed([movement.product for movement in movements])
            broadcast.delivery_updated(note)

        logger.info(f"Created delivery note {note.code} for invoice {invoice.code}")
        return note

    @staticmethod
    def _change_status(
        model: Type,
        document_id: int,
        new_status: str,
        performed_by: str = '',
        notes: Optional[str] = None,
        return_reason: Optional[str] = None
    ) -> DeliveryDocument:
        if new_status not in Delivery.Status.values:
            raise ValidationError({'status': f'Invalid delivery status: {new_status}'})

        with transaction.atomic():
            document = DeliveryService._lock_document(model, document_id)
            old_status = document.status

            if not document.can_transition_to(new_status):
                logger.warning(f"Rejected {model.__name__} {document.code} transition {old_status} -> {new_status}")
                raise InvalidStatusTransitionError(
                    f'Cannot transition from {document.get_status_display()} to '
                    f'{Delivery.Status(new_status).label}'
                )

            document.status = new_status
            if notes is not None:
                document.notes = notes
            if return_reason is not None:
                document.return_reason = return_reason

            if new_status == Delivery.Status.DELIVERED:
                document.completed_at = timezone.now()
                if isinstance(document, DeliveryNote):
                    document.items.update(delivered_qty=F('quantity'))

            restored = []
            if ledger_status.restores_stock(new_status):
                outstanding = list(
                    document.movements.filter(
                        movement_type=MovementType.SALES_OUT,
                        reversal__isnull=True,
                    ).order_by('id')
                )
                StockLedger.lock_products(movement.product_id for movement in outstanding)
                for movement in outstanding:
                    reversal = StockLedger.reverse(
                        movement,
                        performed_by=performed_by,
                        reference=f'{DeliveryService._reference(document)} {new_status.lower()}',
                    )
                    if reversal:
                        restored.append(reversal)

            document.save()

            if restored:
                broadcast.stock_changed([movement.product for movement in restored])
            broadcast.delivery_updated(document)

        logger.info(
            f"{model.__name__} {document.code} {old_status} -> {new_status}"
            f" ({len(restored)} lines restocked) by {performed_by or 'system'}"
        )
        return document

    @staticmethod
    def update_delivery_status(
        delivery_id: int,
        status: str,
        performed_by: str = '',
        notes: Optional[str] = None,
        return_reason: Optional[str] = None
    ) -> Delivery:
        return DeliveryService._change_status(
            Delivery, delivery_id, status, performed_by, notes, return_reason
        )

    @staticmethod
    def update_delivery_note_status(
        note_id: int,
        status: str,
        performed_by: str = '',
        notes: Optional[str] = None,
        return_reason: Optional[str] = None
    ) -> DeliveryNote:
        return DeliveryService._change_status(
            DeliveryNote, note_id, status, performed_by, notes, return_reason
        )

    @staticmethod
    def update_delivery_note(
        note_id: int,
        driver_name: Optional[str] = None,
        vehicle_number: Optional[str] = None,
        delivery_date=None,
        notes: Optional[str] = None
    ) -> DeliveryNote:
        """Edit a note's shipping details; terminal notes are read-only."""
        with transaction.atomic():
            note = DeliveryService._lock_document(DeliveryNote, note_id)
            if note.is_locked:
                raise InvalidEntityStateError(
                    f'Delivery note {note.code} is {note.status} and cannot be edited'
                )

            if driver_name is not None:
                note.driver_name = driver_name
            if vehicle_number is not None:
                note.vehicle_number = vehicle_number
            if delivery_date is not None:
                note.delivery_date = delivery_date
            if notes is not None:
                note.notes = notes
            note.save()
            broadcast.delivery_updated(note)

        return note

    @staticmethod
    def _delete(model: Type, document_id: int) -> None:
        with transaction.atomic():
            document = DeliveryService._lock_document(model, document_id)

            if document.status not in DELETABLE_STATUSES:
                raise InvalidEntityStateError(
                    f'{document.code} is {document.status}; only PENDING or CANCELLED documents can be deleted'
                )

            products = []
            if document.status == Delivery.Status.PENDING:
                movements = list(document.movements.order_by('id'))
                StockLedger.lock_products(movement.product_id for movement in movements)
                products = [StockLedger.undo(movement) for movement in movements]

            code = document.code
            document.delete()

            if products:
                broadcast.stock_changed(products)

        logger.info(f"Deleted {model.__name__} {code}")

    @staticmethod
    def delete_delivery(delivery_id: int) -> None:
        DeliveryService._delete(Delivery, delivery_id)

    @staticmethod
    def delete_delivery_note(note_id: int) -> None:
        DeliveryService._delete(DeliveryNote, note_id)

