"""
Ledger actions.

The boundary other parts of the system (views, management commands, batch
jobs) call to mutate the ledger. Every action returns an envelope and never
raises:

    {'success': True, 'data': {...}}
    {'success': False, 'error': 'Payment amount (50.00) cannot exceed ...', 'code': 'payment_exceeds_remaining'}

``code`` is the failure kind: a LedgerError's ``default_code``,
``validation_error`` for bad input, ``database_error`` for failures the
database raised.
"""

import logging
from typing import Dict, Optional

from django.core.exceptions import ValidationError
from django.db import DatabaseError

from .serializers import (
    DeliveryNoteSerializer,
    DeliverySerializer,
    InvoiceSerializer,
    ManagementStockSerializer,
    PaymentSerializer,
    ProductionLogSerializer,
    ProductSerializer,
    StockMovementSerializer,
    StockOpnameSerializer,
)
from .services import (
    DeliveryService,
    InvoiceService,
    ManagementStockService,
    PaymentService,
    ProductionService,
    StockMovementService,
    StockOpnameService,
)
from utils.exceptions import LedgerError

logger = logging.getLogger(__name__)

VALIDATION_ERROR = 'validation_error'
DATABASE_ERROR = 'database_error'
INTERNAL_ERROR = 'internal_error'


def _validation_message(error: ValidationError) -> str:
    if hasattr(error, 'error_dict'):
        return '; '.join(
            f'{field}: {message}' if field != '__all__' else message
            for field, messages in error.message_dict.items()
            for message in messages
        )
    return '; '.join(error.messages)


def _failure(error: str, code: str) -> Dict:
    return {'success': False, 'error': error, 'code': code}


def _run(description: str, operation, serializer_class=None) -> Dict:
    """
    Execute ``operation`` and wrap the outcome in an envelope.

    Ledger and validation failures are expected outcomes and logged as
    warnings; anything else is logged with its traceback.
    """
    try:
        result = operation()
        data = None
        if serializer_class is not None and result is not None:
            data = serializer_class(result).data
    except LedgerError as e:
        logger.warning(f"{description} rejected: {e.detail}")
        return _failure(str(e.detail), e.default_code)
    except ValidationError as e:
        message = _validation_message(e)
        logger.warning(f"{description} rejected: {message}")
        return _failure(message, VALIDATION_ERROR)
    except DatabaseError:
        logger.exception(f"{description} failed with a database error")
        return _failure('The database rejected the operation', DATABASE_ERROR)
    except Exception:
        logger.exception(f"{description} failed unexpectedly")
        return _failure('An unexpected error occurred', INTERNAL_ERROR)

    return {'success': True, 'data': data}


# ============================================================================
# Stock movements
# ============================================================================

def create_stock_movement(data: Dict, performed_by: str = '') -> Dict:
    return _run(
        'Create stock movement',
        lambda: StockMovementService.create_movement(performed_by=performed_by, **data),
        StockMovementSerializer,
    )


def delete_stock_movement(movement_id: int) -> Dict:
    return _run(
        f'Delete stock movement {movement_id}',
        lambda: StockMovementService.delete_movement(movement_id),
        ProductSerializer,
    )


# ============================================================================
# Invoices & payments
# ============================================================================

def create_invoice(data: Dict, performed_by: str = '') -> Dict:
    return _run(
        'Create invoice',
        lambda: InvoiceService.create_invoice(created_by=performed_by, **data),
        InvoiceSerializer,
    )


def update_invoice_status(invoice_id: int, status: str, performed_by: str = '') -> Dict:
    return _run(
        f'Update invoice {invoice_id} status',
        lambda: InvoiceService.update_invoice_status(invoice_id, status, performed_by=performed_by),
        InvoiceSerializer,
    )


def delete_invoice(invoice_id: int) -> Dict:
    return _run(f'Delete invoice {invoice_id}', lambda: InvoiceService.delete_invoice(invoice_id))


def create_payment(data: Dict, performed_by: str = '') -> Dict:
    return _run(
        'Create payment',
        lambda: PaymentService.create_payment(performed_by=performed_by, **data),
        PaymentSerializer,
    )


def update_payment(payment_id: int, data: Dict, performed_by: str = '') -> Dict:
    return _run(
        f'Update payment {payment_id}',
        lambda: PaymentService.update_payment(payment_id, performed_by=performed_by, **data),
        PaymentSerializer,
    )


def delete_payment(payment_id: int) -> Dict:
    return _run(
        f'Delete payment {payment_id}',
        lambda: PaymentService.delete_payment(payment_id),
        InvoiceSerializer,
    )


# ============================================================================
# Deliveries & delivery notes
# ============================================================================

def create_delivery(data: Dict, performed_by: str = '') -> Dict:
    return _run(
        'Create delivery',
        lambda: DeliveryService.create_delivery(performed_by=performed_by, **data),
        DeliverySerializer,
    )


def update_delivery_status(
    delivery_id: int,
    status: str,
    performed_by: str = '',
    notes: Optional[str] = None,
    return_reason: Optional[str] = None
) -> Dict:
    return _run(
        f'Update delivery {delivery_id} status to {status}',
        lambda: DeliveryService.update_delivery_status(
            delivery_id, status, performed_by=performed_by, notes=notes, return_reason=return_reason
        ),
        DeliverySerializer,
    )


def delete_delivery(delivery_id: int) -> Dict:
    return _run(f'Delete delivery {delivery_id}', lambda: DeliveryService.delete_delivery(delivery_id))


def create_delivery_note(data: Dict, performed_by: str = '') -> Dict:
    return _run(
        'Create delivery note',
        lambda: DeliveryService.create_delivery_note(warehouse_user=performed_by, **data),
        DeliveryNoteSerializer,
    )


def update_delivery_note(note_id: int, data: Dict, performed_by: str = '') -> Dict:
    return _run(
        f'Update delivery note {note_id} by {performed_by or "system"}',
        lambda: DeliveryService.update_delivery_note(note_id, **data),
        DeliveryNoteSerializer,
    )


def update_delivery_note_status(
    note_id: int,
    status: str,
    performed_by: str = '',
    notes: Optional[str] = None,
    return_reason: Optional[str] = None
) -> Dict:
    return _run(
        f'Update delivery note {note_id} status to {status}',
        lambda: DeliveryService.update_delivery_note_status(
            note_id, status, performed_by=performed_by, notes=notes, return_reason=return_reason
        ),
        DeliveryNoteSerializer,
    )


def delete_delivery_note(note_id: int) -> Dict:
    return _run(f'Delete delivery note {note_id}', lambda: DeliveryService.delete_delivery_note(note_id))


# ============================================================================
# Stock opname, management stock, production
# ============================================================================

def create_stock_opname(data: Dict, performed_by: str = '') -> Dict:
    return _run(
        'Create stock opname',
        lambda: StockOpnameService.create_stock_opname(conducted_by=performed_by, **data),
        StockOpnameSerializer,
    )


def update_stock_opname(opname_id: int, data: Dict, performed_by: str = '') -> Dict:
    return _run(
        f'Update stock opname {opname_id} by {performed_by or "system"}',
        lambda: StockOpnameService.update_stock_opname(opname_id, **data),
        StockOpnameSerializer,
    )


def delete_stock_opname(opname_id: int) -> Dict:
    return _run(f'Delete stock opname {opname_id}', lambda: StockOpnameService.delete_stock_opname(opname_id))


def create_management_stock(data: Dict, performed_by: str = '') -> Dict:
    return _run(
        'Create management stock',
        lambda: ManagementStockService.create_management_stock(produced_by=performed_by, **data),
        ManagementStockSerializer,
    )


def update_management_stock(management_stock_id: int, data: Dict, performed_by: str = '') -> Dict:
    return _run(
        f'Update management stock {management_stock_id}',
        lambda: ManagementStockService.update_management_stock(
            management_stock_id, performed_by=performed_by, **data
        ),
        ManagementStockSerializer,
    )


def delete_management_stock(management_stock_id: int) -> Dict:
    return _run(
        f'Delete management stock {management_stock_id}',
        lambda: ManagementStockService.delete_management_stock(management_stock_id),
    )


def create_production_log(data: Dict, performed_by: str = '') -> Dict:
    return _run(
        'Create production log',
        lambda: ProductionService.create_production_log(produced_by=performed_by, **data),
        ProductionLogSerializer,
    )


def update_production_log(production_log_id: int, data: Dict, performed_by: str = '') -> Dict:
    return _run(
        f'Update production log {production_log_id}',
        lambda: ProductionService.update_production_log(
            production_log_id, performed_by=performed_by, **data
        ),
        ProductionLogSerializer,
    )


def delete_production_log(production_log_id: int) -> Dict:
    return _run(
        f'Delete production log {production_log_id}',
        lambda: ProductionService.delete_production_log(production_log_id),
    )
