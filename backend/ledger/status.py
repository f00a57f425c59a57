"""
Status derivation.

Pure functions mapping accumulated totals to enumerated statuses. Nothing in
here touches the database, so every function can be called standalone.
"""

from decimal import Decimal
from typing import Iterable

from ledger.choices import DeliveryStatus, OpnameStatus, PaymentStatus


TERMINAL_DELIVERY_STATUSES = frozenset({
    DeliveryStatus.DELIVERED,
    DeliveryStatus.CANCELLED,
    DeliveryStatus.RETURNED,
})

# Statuses whose entry hands the document's stock back to the warehouse.
STOCK_RESTORING_STATUSES = frozenset({
    DeliveryStatus.CANCELLED,
    DeliveryStatus.RETURNED,
})

DELIVERY_TRANSITIONS = {
    DeliveryStatus.PENDING: (DeliveryStatus.IN_TRANSIT, DeliveryStatus.CANCELLED),
    DeliveryStatus.IN_TRANSIT: (DeliveryStatus.DELIVERED, DeliveryStatus.RETURNED),
}


def payment_status(total_amount: Decimal, paid_amount: Decimal) -> str:
    """
    Derive an invoice's payment status from its totals.

    PAID once nothing remains, PARTIALLY_PAID while something has been paid,
    UNPAID otherwise.
    """
    remaining = total_amount - paid_amount
    if remaining <= 0:
        return PaymentStatus.PAID
    if paid_amount > 0:
        return PaymentStatus.PARTIALLY_PAID
    return PaymentStatus.UNPAID


def opname_status(differences: Iterable[int]) -> str:
    """RECONCILED if any counted item disagrees with the system, COMPLETED otherwise."""
    if any(difference != 0 for difference in differences):
        return OpnameStatus.RECONCILED
    return OpnameStatus.COMPLETED


def is_delivery_terminal(status: str) -> bool:
    return status in TERMINAL_DELIVERY_STATUSES


def can_transition(current: str, target: str) -> bool:
    """
    Check a delivery (or delivery note) status change against the state machine.

    Valid transitions:
    - PENDING → IN_TRANSIT, CANCELLED
    - IN_TRANSIT → DELIVERED, RETURNED
    - DELIVERED, CANCELLED, RETURNED → (terminal, no transitions)
    """
    return target in DELIVERY_TRANSITIONS.get(current, ())


def restores_stock(status: str) -> bool:
    return status in STOCK_RESTORING_STATUSES


def stock_status(current_stock: int, min_stock: int) -> str:
    if current_stock <= 0:
        return 'OUT_OF_STOCK'
    elif current_stock <= min_stock:
        return 'LOW_STOCK'
    return 'IN_STOCK'
