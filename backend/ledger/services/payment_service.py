"""
Payment Service

Records payments against invoices. Each create, edit or delete moves the
invoice's paid amount through InvoiceBalance inside one transaction, so the
payment row and the invoice balance always change together.

Business Rules:
- Amount must be greater than zero
- Amount cannot exceed the invoice's remaining amount
- Payments against cancelled invoices are refused
- A payment that settles the invoice is marked CLEARED
"""

import logging
from decimal import Decimal
from typing import Optional

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from ledger import broadcast
from ledger.models import Invoice, Payment
from ledger.services.invoice_service import InvoiceBalance, to_money
from utils.codes import generate_code
from utils.exceptions import (
    EntityNotFoundError,
    InvalidEntityStateError,
    PaymentExceedsRemainingError,
)

logger = logging.getLogger(__name__)


class PaymentService:

    @staticmethod
    def _validate_amount(amount) -> Decimal:
        amount = to_money(amount, 'amount')
        if amount <= Decimal('0.00'):
            raise ValidationError({'amount': 'Amount must be greater than zero'})
        return amount

    @staticmethod
    def _validate_status(status: str):
        if status not in (Payment.Status.PENDING, Payment.Status.CLEARED):
            raise ValidationError({'status': f'Invalid payment status: {status}'})

    @staticmethod
    def _validate_method(method: str):
        if method not in Payment.PaymentMethod.values:
            raise ValidationError({'method': f'Invalid payment method: {method}'})

    @staticmethod
    def _lock_invoice(invoice_id: int) -> Invoice:
        try:
            return Invoice.objects.select_for_update().get(pk=invoice_id)
        except Invoice.DoesNotExist:
            raise EntityNotFoundError(f'Invoice {invoice_id} not found')

    @staticmethod
    def _settled_status(invoice: Invoice, requested: str, payment_code: str) -> str:
        """Promote the payment to CLEARED when it leaves nothing to pay."""
        if invoice.payment_status == Invoice.PaymentStatus.PAID and requested != Payment.Status.CLEARED:
            logger.info(f"Invoice {invoice.code} fully paid, marking payment {payment_code} CLEARED")
            return Payment.Status.CLEARED
        return requested

    @staticmethod
    def create_payment(
        invoice_id: int,
        amount,
        method: str = Payment.PaymentMethod.CASH,
        status: str = Payment.Status.PENDING,
        payment_date=None,
        payment_code: Optional[str] = None,
        notes: str = '',
        proof_url: str = '',
        performed_by: str = ''
    ) -> Payment:
        """
        Record a payment and apply it to the invoice.

        Args:
            invoice_id: Invoice being paid
            amount: Payment amount (> 0, <= remaining)
            method: Payment method
            status: Requested status (PENDING or CLEARED)
            performed_by: User recording the payment

        Returns:
            The created Payment

        Raises:
            ValidationError: Amount, method or status invalid
            EntityNotFoundError: Invoice does not exist
            InvalidEntityStateError: Invoice is cancelled
            PaymentExceedsRemainingError: Amount larger than remaining
        """
        amount = PaymentService._validate_amount(amount)
        PaymentService._validate_status(status)
        PaymentService._validate_method(method)
        payment_code = payment_code or generate_code('PAY')

        with transaction.atomic():
            invoice = PaymentService._lock_invoice(invoice_id)

            if invoice.status == Invoice.Status.CANCELLED:
                raise InvalidEntityStateError(f'Invoice {invoice.code} is cancelled')

            if amount > invoice.remaining_amount:
                logger.warning(
                    f"Rejected payment of {amount} on {invoice.code}: remaining {invoice.remaining_amount}"
                )
                raise PaymentExceedsRemainingError(
                    f'Payment amount ({amount}) cannot exceed remaining amount ({invoice.remaining_amount})'
                )

            invoice = InvoiceBalance.apply(invoice.pk, amount)

            payment = Payment.objects.create(
                payment_code=payment_code,
                invoice=invoice,
                payment_date=payment_date or timezone.now(),
                amount=amount,
                method=method,
                status=PaymentService._settled_status(invoice, status, payment_code),
                notes=notes,
                proof_url=proof_url,
                performed_by=performed_by,
            )
            broadcast.invoice_updated(invoice)

        logger.info(f"Recorded payment {payment.payment_code} of {amount} on {invoice.code}")
        return payment

    @staticmethod
    def update_payment(
        payment_id: int,
        amount=None,
        invoice_id: Optional[int] = None,
        method: Optional[str] = None,
        status: Optional[str] = None,
        payment_date=None,
        notes: Optional[str] = None,
        proof_url: Optional[str] = None,
        performed_by: str = ''
    ) -> Payment:
        """
        Edit a payment, moving it to another invoice if ``invoice_id`` changes.

        The old amount comes off the old invoice before the new amount goes on
        the new one, so the remaining-amount check sees the payment's own
        contribution as available. Both invoices are locked in id order.
        """
        if amount is not None:
            amount = PaymentService._validate_amount(amount)
        if status is not None:
            PaymentService._validate_status(status)
        if method is not None:
            PaymentService._validate_method(method)

        with transaction.atomic():
            try:
                payment = Payment.objects.select_for_update().get(pk=payment_id)
            except Payment.DoesNotExist:
                raise EntityNotFoundError(f'Payment {payment_id} not found')

            old_invoice_id = payment.invoice_id
            new_invoice_id = invoice_id or old_invoice_id
            old_amount = payment.amount
            new_amount = amount if amount is not None else old_amount

            invoices = {
                invoice.pk: invoice
                for invoice in Invoice.objects.select_for_update().filter(
                    pk__in={old_invoice_id, new_invoice_id}
                ).order_by('pk')
            }
            if new_invoice_id not in invoices:
                raise EntityNotFoundError(f'Invoice {new_invoice_id} not found')
            if new_invoice_id != old_invoice_id and invoices[new_invoice_id].status == Invoice.Status.CANCELLED:
                raise InvalidEntityStateError(f'Invoice {invoices[new_invoice_id].code} is cancelled')

            InvoiceBalance.apply(old_invoice_id, -old_amount)
            target = Invoice.objects.get(pk=new_invoice_id)
            if new_amount > target.remaining_amount:
                raise PaymentExceedsRemainingError(
                    f'Payment amount ({new_amount}) cannot exceed remaining amount ({target.remaining_amount})'
                )
            target = InvoiceBalance.apply(new_invoice_id, new_amount)

            payment.invoice = target
            payment.amount = new_amount
            if method is not None:
                payment.method = method
            if payment_date is not None:
                payment.payment_date = payment_date
            if notes is not None:
                payment.notes = notes
            if proof_url is not None:
                payment.proof_url = proof_url
            payment.status = PaymentService._settled_status(
                target, status or payment.status, payment.payment_code
            )
            payment.save()

            broadcast.invoice_updated(target)
            if new_invoice_id != old_invoice_id:
                broadcast.invoice_updated(Invoice.objects.get(pk=old_invoice_id))

        logger.info(
            f"Updated payment {payment.payment_code}: {old_amount} -> {new_amount} by {performed_by or 'system'}"
        )
        return payment

    @staticmethod
    def delete_payment(payment_id: int) -> Invoice:
        """
        Delete a payment and take its amount back off the invoice.

        Returns:
            The invoice with its status re-derived from the reduced totals
        """
        with transaction.atomic():
            try:
                payment = Payment.objects.select_for_update().get(pk=payment_id)
            except Payment.DoesNotExist:
                raise EntityNotFoundError(f'Payment {payment_id} not found')

            PaymentService._lock_invoice(payment.invoice_id)
            invoice = InvoiceBalance.apply(payment.invoice_id, -payment.amount)
            code = payment.payment_code
            payment.delete()
            broadcast.invoice_updated(invoice)

        logger.info(f"Deleted payment {code}; invoice {invoice.code} now {invoice.payment_status}")
        return invoice
