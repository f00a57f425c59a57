"""
Custom exceptions for the ERP ledger.

Every ledger error is an APIException so the HTTP layer can render it
directly, and every one carries a ``default_code`` the actions layer uses
to tell the failure kinds apart.
"""

from rest_framework.exceptions import APIException
from rest_framework import status


class LedgerError(APIException):
    """
    Base class for failures raised inside a ledger transaction.
    Raising one inside ``transaction.atomic()`` rolls back every write.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'The ledger operation could not be completed.'
    default_code = 'ledger_error'


class EntityNotFoundError(LedgerError):
    """
    Exception raised when a referenced entity does not exist.
    """
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Entity not found.'
    default_code = 'not_found'


class InvalidEntityStateError(LedgerError):
    """
    Exception raised when an entity exists but is in the wrong state for
    the requested operation (e.g. invoice not PAID, opname not RECONCILED).
    """
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Entity is not in a valid state for this operation.'
    default_code = 'invalid_state'


class InvalidStatusTransitionError(LedgerError):
    """
    Exception raised when attempting an invalid status transition.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Invalid status transition.'
    default_code = 'invalid_status_transition'


class InsufficientStockError(LedgerError):
    """
    Exception raised when a movement would bring a product's stock below zero.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Insufficient stock.'
    default_code = 'insufficient_stock'


class PaymentExceedsRemainingError(LedgerError):
    """
    Exception raised when a payment is larger than the invoice's remaining amount.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Payment amount cannot exceed remaining amount.'
    default_code = 'payment_exceeds_remaining'


class DuplicateDeliveryError(LedgerError):
    """
    Exception raised when an invoice already has an active delivery or delivery note.
    """
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'An active delivery already exists for this invoice.'
    default_code = 'duplicate_delivery'


class AlreadyConsumedError(LedgerError):
    """
    Exception raised when modifying a stock opname that an adjustment has
    already applied.
    """
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'This stock opname has already been applied.'
    default_code = 'already_consumed'
