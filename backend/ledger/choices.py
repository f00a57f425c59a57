"""
Enumerations shared by the ledger models and the status derivation functions.

Kept apart from models.py so ``ledger.status`` can stay free of model imports.
"""

from django.db import models


class MovementType(models.TextChoices):
    PRODUCTION_IN = 'PRODUCTION_IN', 'Production In'
    SALES_OUT = 'SALES_OUT', 'Sales Out'
    RETURN_IN = 'RETURN_IN', 'Return In'
    ADJUSTMENT_IN = 'ADJUSTMENT_IN', 'Adjustment In'
    ADJUSTMENT_OUT = 'ADJUSTMENT_OUT', 'Adjustment Out'
    OPNAME_ADJUSTMENT = 'OPNAME_ADJUSTMENT', 'Opname Adjustment'


# Direction of each movement type. OPNAME_ADJUSTMENT is the only type whose
# change may carry either sign.
INBOUND_MOVEMENT_TYPES = (
    MovementType.PRODUCTION_IN,
    MovementType.RETURN_IN,
    MovementType.ADJUSTMENT_IN,
)
OUTBOUND_MOVEMENT_TYPES = (
    MovementType.SALES_OUT,
    MovementType.ADJUSTMENT_OUT,
)

# Types staff may create or delete by hand; the rest are owned by documents.
MANUAL_MOVEMENT_TYPES = (
    MovementType.ADJUSTMENT_IN,
    MovementType.ADJUSTMENT_OUT,
    MovementType.OPNAME_ADJUSTMENT,
)


class InvoiceType(models.TextChoices):
    PRODUCT = 'PRODUCT', 'Product'
    SERVICE = 'SERVICE', 'Service'


class InvoiceStatus(models.TextChoices):
    DRAFT = 'DRAFT', 'Draft'
    SENT = 'SENT', 'Sent'
    OVERDUE = 'OVERDUE', 'Overdue'
    CANCELLED = 'CANCELLED', 'Cancelled'


class PaymentStatus(models.TextChoices):
    UNPAID = 'UNPAID', 'Unpaid'
    PARTIALLY_PAID = 'PARTIALLY_PAID', 'Partially Paid'
    PAID = 'PAID', 'Paid'


class PaidStatus(models.TextChoices):
    PENDING = 'PENDING', 'Pending'
    CLEARED = 'CLEARED', 'Cleared'
    CANCELED = 'CANCELED', 'Canceled'


class PaymentMethod(models.TextChoices):
    CASH = 'CASH', 'Cash'
    BANK_TRANSFER = 'BANK_TRANSFER', 'Bank Transfer'
    CARD = 'CARD', 'Card/PDQ'
    CHEQUE = 'CHEQUE', 'Cheque'
    OTHER = 'OTHER', 'Other'


class DeliveryStatus(models.TextChoices):
    PENDING = 'PENDING', 'Pending'
    IN_TRANSIT = 'IN_TRANSIT', 'In Transit'
    DELIVERED = 'DELIVERED', 'Delivered'
    CANCELLED = 'CANCELLED', 'Cancelled'
    RETURNED = 'RETURNED', 'Returned'


class OpnameStatus(models.TextChoices):
    IN_PROGRESS = 'IN_PROGRESS', 'In Progress'
    COMPLETED = 'COMPLETED', 'Completed'
    RECONCILED = 'RECONCILED', 'Reconciled'


class ManagementStockStatus(models.TextChoices):
    IN = 'IN', 'Stock In'
    OUT = 'OUT', 'Stock Out'
    OPNAME_ADJUSTMENT = 'OPNAME_ADJUSTMENT', 'Opname Adjustment'
