from decimal import Decimal

from django.db import models
from django.core.exceptions import ValidationError
from django.utils import timezone

from ledger import status as ledger_status
from ledger.choices import (
    DeliveryStatus,
    INBOUND_MOVEMENT_TYPES,
    InvoiceStatus,
    InvoiceType,
    ManagementStockStatus,
    MovementType,
    OpnameStatus,
    OUTBOUND_MOVEMENT_TYPES,
    PaidStatus,
    PaymentMethod,
    PaymentStatus,
)
from utils.constants import STATUS_COLORS, STATUS_ICONS


class Customer(models.Model):
    code = models.CharField(
        max_length=50,
        unique=True,
        db_index=True,
        help_text="Customer code (e.g., CUST-001)"
    )
    name = models.CharField(max_length=200)
    address = models.TextField(blank=True)
    phone = models.CharField(max_length=50, blank=True)
    email = models.EmailField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return f"{self.code} - {self.name}"


class Product(models.Model):
    """
    Product catalog with its running stock level.

    ``current_stock`` is a cached balance: it must always equal the sum of
    ``quantity_change`` over the product's movements. Only the stock ledger
    writes it.
    """
    code = models.CharField(
        max_length=50,
        unique=True,
        db_index=True,
        help_text="Product code (e.g., PRD-001)"
    )
    name = models.CharField(
        max_length=200,
        help_text="Product name"
    )
    unit = models.CharField(
        max_length=20,
        default='pcs',
        help_text="Unit of measure"
    )
    price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
        help_text="Default selling price"
    )

    # Inventory tracking
    current_stock = models.IntegerField(
        default=0,
        help_text="Current stock level (maintained by stock movements)"
    )
    min_stock = models.IntegerField(
        default=10,
        help_text="Minimum stock level before low stock alert"
    )

    is_active = models.BooleanField(
        default=True,
        help_text="Is this product available for sale?"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']
        indexes = [
            models.Index(fields=['code']),
            models.Index(fields=['is_active']),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(current_stock__gte=0),
                name='product_stock_non_negative',
                violation_error_message='Stock cannot be negative'
            ),
        ]

    def __str__(self):
        return f"{self.code} - {self.name}"

    @property
    def is_low_stock(self):
        """Check if product is at or below its minimum stock"""
        return self.current_stock <= self.min_stock

    @property
    def is_out_of_stock(self):
        return self.current_stock <= 0

    @property
    def stock_status(self):
        return ledger_status.stock_status(self.current_stock, self.min_stock)

    def clean(self):
        super().clean()

        if self.price < Decimal('0.00'):
            raise ValidationError({
                'price': 'Price cannot be negative'
            })

        if self.min_stock < 0:
            raise ValidationError({
                'min_stock': 'Minimum stock cannot be negative'
            })


class Invoice(models.Model):
    """
    Customer invoice with a running paid/remaining balance.

    ``total_amount`` is fixed when the invoice is created from its line items.
    ``paid_amount`` moves only through payments, and ``remaining_amount`` and
    ``payment_status`` are re-derived from the two on every save.
    """
    InvoiceType = InvoiceType
    Status = InvoiceStatus
    PaymentStatus = PaymentStatus

    code = models.CharField(
        max_length=50,
        unique=True,
        db_index=True,
        help_text="Invoice number (e.g., INV-2024-0001)"
    )
    customer = models.ForeignKey(
        Customer,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='invoices'
    )
    invoice_type = models.CharField(
        max_length=20,
        choices=InvoiceType.choices,
        default=InvoiceType.PRODUCT,
        help_text="PRODUCT invoices ship goods; SERVICE invoices never touch stock"
    )
    status = models.CharField(
        max_length=20,
        choices=InvoiceStatus.choices,
        default=InvoiceStatus.DRAFT,
        db_index=True
    )
    invoice_date = models.DateTimeField(default=timezone.now)
    due_date = models.DateTimeField(null=True, blank=True)
    use_delivery_note = models.BooleanField(
        default=False,
        help_text="Ship through a delivery note (requires full payment) instead of a delivery"
    )

    # Totals, fixed at creation
    subtotal = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0.00'))
    tax_percentage = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal('0.00'))
    tax = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0.00'))
    discount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0.00'))
    total_amount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0.00'))

    # Running balance
    paid_amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        default=Decimal('0.00'),
        help_text="Sum of payments applied to this invoice"
    )
    remaining_amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        default=Decimal('0.00'),
        help_text="total_amount - paid_amount"
    )
    payment_status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.UNPAID,
        db_index=True
    )

    notes = models.TextField(blank=True)
    created_by = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-invoice_date']
        indexes = [
            models.Index(fields=['-invoice_date']),
            models.Index(fields=['status', 'payment_status']),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(paid_amount__gte=0),
                name='invoice_paid_non_negative',
                violation_error_message='Paid amount cannot be negative'
            ),
            models.CheckConstraint(
                condition=models.Q(paid_amount__lte=models.F('total_amount')),
                name='invoice_paid_within_total',
                violation_error_message='Paid amount cannot exceed the invoice total'
            ),
        ]

    def __str__(self):
        return f"Invoice {self.code} ({self.total_amount})"

    def get_status_color(self):
        return STATUS_COLORS.get(self.payment_status, '#6B7280')

    def get_status_icon(self):
        return STATUS_ICONS.get(self.payment_status, '❓')

    @property
    def status_display(self):
        """
        Payment status information for frontend display.

        Returns:
            dict: {
                'status': 'PARTIALLY_PAID',
                'label': 'Partially Paid',
                'color': '#8B5CF6',
                'icon': '📊',
            }
        """
        return {
            'status': self.payment_status,
            'label': self.get_payment_status_display(),
            'color': self.get_status_color(),
            'icon': self.get_status_icon(),
        }

    def active_delivery_exists(self):
        """Is there a delivery or delivery note for this invoice that still holds its stock?"""
        inactive = ledger_status.STOCK_RESTORING_STATUSES
        return (
            self.deliveries.exclude(status__in=inactive).exists()
            or self.delivery_notes.exclude(status__in=inactive).exists()
        )

    def save(self, *args, **kwargs):
        """Re-derive remaining amount and payment status from the totals."""
        self.remaining_amount = self.total_amount - self.paid_amount
        self.payment_status = ledger_status.payment_status(self.total_amount, self.paid_amount)
        super().save(*args, **kwargs)


class InvoiceItem(models.Model):
    invoice = models.ForeignKey(
        Invoice,
        on_delete=models.CASCADE,
        related_name='items'
    )
    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='invoice_items',
        help_text="Empty for service lines"
    )
    description = models.CharField(max_length=255, blank=True)
    quantity = models.PositiveIntegerField()
    price = models.DecimalField(max_digits=12, decimal_places=2)
    discount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    total_price = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        help_text="quantity × price - discount"
    )

    class Meta:
        ordering = ['id']

    def __str__(self):
        label = self.product.name if self.product_id else self.description
        return f"{self.quantity}x {label} ({self.invoice.code})"

    def save(self, *args, **kwargs):
        self.total_price = self.quantity * self.price - self.discount
        super().save(*args, **kwargs)


class Payment(models.Model):
    """
    A payment received against an invoice.
    Creating, editing or deleting one moves the invoice's paid amount.
    """
    Status = PaidStatus
    PaymentMethod = PaymentMethod

    payment_code = models.CharField(
        max_length=50,
        unique=True,
        db_index=True,
        help_text="Payment reference (e.g., PAY-2024-0001)"
    )
    invoice = models.ForeignKey(
        Invoice,
        on_delete=models.PROTECT,
        related_name='payments'
    )
    payment_date = models.DateTimeField(default=timezone.now)
    amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        help_text="Payment amount"
    )
    method = models.CharField(
        max_length=20,
        choices=PaymentMethod.choices,
        default=PaymentMethod.CASH
    )
    status = models.CharField(
        max_length=20,
        choices=PaidStatus.choices,
        default=PaidStatus.PENDING,
        help_text="Promoted to CLEARED once the invoice is fully paid. CANCELED is never set: a withdrawn payment is deleted, which reverses its amount"
    )
    notes = models.TextField(blank=True)
    proof_url = models.CharField(
        max_length=500,
        blank=True,
        help_text="Link to the uploaded proof of payment"
    )
    performed_by = models.CharField(
        max_length=255,
        blank=True,
        help_text="User who recorded this payment"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-payment_date']
        indexes = [
            models.Index(fields=['-payment_date']),
            models.Index(fields=['invoice', 'status']),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name='payment_amount_positive',
                violation_error_message='Amount must be greater than zero'
            ),
        ]

    def __str__(self):
        return f"{self.payment_code} - {self.amount} ({self.invoice.code})"

    def clean(self):
        super().clean()

        if self.amount is not None and self.amount <= Decimal('0.00'):
            raise ValidationError({
                'amount': 'Amount must be greater than zero'
            })


class DeliveryDocument(models.Model):
    """
    Fields and state machine shared by deliveries and delivery notes.

    Both take SALES_OUT movements for the invoice's product lines when created
    and hand the stock back when they end CANCELLED or RETURNED.
    """
    Status = DeliveryStatus

    code = models.CharField(max_length=50, unique=True, db_index=True)
    delivery_date = models.DateTimeField(default=timezone.now)
    status = models.CharField(
        max_length=20,
        choices=DeliveryStatus.choices,
        default=DeliveryStatus.PENDING,
        db_index=True
    )
    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Set when the document reaches DELIVERED"
    )
    notes = models.TextField(blank=True)
    return_reason = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True
        ordering = ['-delivery_date']

    @property
    def is_locked(self):
        """Terminal documents cannot change status or be edited."""
        return ledger_status.is_delivery_terminal(self.status)

    def can_transition_to(self, new_status):
        return ledger_status.can_transition(self.status, new_status)

    def get_status_color(self):
        return STATUS_COLORS.get(self.status, '#6B7280')

    def get_status_icon(self):
        return STATUS_ICONS.get(self.status, '❓')

    @property
    def status_display(self):
        return {
            'status': self.status,
            'label': self.get_status_display(),
            'color': self.get_status_color(),
            'icon': self.get_status_icon(),
            'is_locked': self.is_locked,
        }


class Delivery(DeliveryDocument):
    invoice = models.ForeignKey(
        Invoice,
        on_delete=models.PROTECT,
        related_name='deliveries'
    )
    helper = models.CharField(
        max_length=255,
        blank=True,
        help_text="Staff member handling the delivery"
    )

    class Meta(DeliveryDocument.Meta):
        verbose_name_plural = 'Deliveries'

    def __str__(self):
        return f"Delivery {self.code} ({self.invoice.code})"


class DeliveryNote(DeliveryDocument):
    invoice = models.ForeignKey(
        Invoice,
        on_delete=models.PROTECT,
        related_name='delivery_notes'
    )
    customer = models.ForeignKey(
        Customer,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='delivery_notes'
    )
    driver_name = models.CharField(max_length=100, blank=True)
    vehicle_number = models.CharField(max_length=50, blank=True)
    warehouse_user = models.CharField(
        max_length=255,
        blank=True,
        help_text="Warehouse user who issued the note"
    )

    class Meta(DeliveryDocument.Meta):
        pass

    def __str__(self):
        return f"Delivery Note {self.code} ({self.invoice.code})"


class DeliveryNoteItem(models.Model):
    delivery_note = models.ForeignKey(
        DeliveryNote,
        on_delete=models.CASCADE,
        related_name='items'
    )
    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name='delivery_note_items'
    )
    quantity = models.PositiveIntegerField()
    delivered_qty = models.PositiveIntegerField(
        default=0,
        help_text="Filled in when the note is DELIVERED"
    )
    notes = models.TextField(blank=True)

    class Meta:
        ordering = ['id']

    def __str__(self):
        return f"{self.quantity}x {self.product.name} ({self.delivery_note.code})"


class StockOpname(models.Model):
    """
    A physical stock count.

    RECONCILED means at least one item disagreed with the system and is waiting
    for an OPNAME_ADJUSTMENT; applying that adjustment marks it COMPLETED.
    """
    Status = OpnameStatus

    code = models.CharField(max_length=50, unique=True, db_index=True)
    opname_date = models.DateTimeField(default=timezone.now)
    status = models.CharField(
        max_length=20,
        choices=OpnameStatus.choices,
        default=OpnameStatus.IN_PROGRESS,
        db_index=True
    )
    notes = models.TextField(blank=True)
    conducted_by = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-opname_date']
        verbose_name = 'Stock Opname'

    def __str__(self):
        return f"Opname {self.code} ({self.status})"

    @property
    def is_consumed(self):
        """Has an OPNAME_ADJUSTMENT already been applied from this count?"""
        return self.management_stocks.exists()


class StockOpnameItem(models.Model):
    opname = models.ForeignKey(
        StockOpname,
        on_delete=models.CASCADE,
        related_name='items'
    )
    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name='opname_items'
    )
    system_stock = models.IntegerField(help_text="Stock level on record at count time")
    physical_stock = models.IntegerField(help_text="Stock level actually counted")
    difference = models.IntegerField(help_text="physical_stock - system_stock")
    notes = models.TextField(blank=True)

    class Meta:
        ordering = ['id']
        constraints = [
            models.CheckConstraint(
                condition=models.Q(physical_stock__gte=0),
                name='opname_physical_non_negative',
                violation_error_message='Physical stock cannot be negative'
            ),
        ]

    def __str__(self):
        return f"{self.product.name}: {self.system_stock} → {self.physical_stock}"

    def save(self, *args, **kwargs):
        self.difference = self.physical_stock - self.system_stock
        super().save(*args, **kwargs)


class ManagementStock(models.Model):
    """Manual stock adjustment: stock in, stock out, or an opname correction."""
    Status = ManagementStockStatus

    code = models.CharField(max_length=50, unique=True, db_index=True)
    management_date = models.DateTimeField(default=timezone.now)
    status = models.CharField(
        max_length=20,
        choices=ManagementStockStatus.choices
    )
    stock_opname = models.ForeignKey(
        StockOpname,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='management_stocks',
        help_text="Opname applied by an OPNAME_ADJUSTMENT"
    )
    notes = models.TextField(blank=True)
    produced_by = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-management_date']
        verbose_name = 'Management Stock'
        verbose_name_plural = 'Management Stock'

    def __str__(self):
        return f"{self.code} ({self.status})"

    def clean(self):
        super().clean()

        if self.status == ManagementStockStatus.OPNAME_ADJUSTMENT and not self.stock_opname_id:
            raise ValidationError({
                'stock_opname': 'Opname adjustments must reference a stock opname'
            })


class ManagementStockItem(models.Model):
    management_stock = models.ForeignKey(
        ManagementStock,
        on_delete=models.CASCADE,
        related_name='items'
    )
    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name='management_stock_items'
    )
    quantity = models.IntegerField(
        help_text="Positive for IN/OUT; signed difference for OPNAME_ADJUSTMENT"
    )
    stock_opname_item = models.ForeignKey(
        StockOpnameItem,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='management_stock_items'
    )
    notes = models.TextField(blank=True)

    class Meta:
        ordering = ['id']

    def __str__(self):
        return f"{self.quantity} {self.product.name} ({self.management_stock.code})"


class ProductionLog(models.Model):
    production_date = models.DateTimeField(default=timezone.now)
    notes = models.TextField(blank=True)
    produced_by = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-production_date']

    def __str__(self):
        return f"Production #{self.pk} ({self.production_date:%Y-%m-%d})"


class ProductionLogItem(models.Model):
    production_log = models.ForeignKey(
        ProductionLog,
        on_delete=models.CASCADE,
        related_name='items'
    )
    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name='production_items'
    )
    quantity = models.PositiveIntegerField()
    notes = models.TextField(blank=True)

    class Meta:
        ordering = ['id']

    def __str__(self):
        return f"{self.quantity}x {self.product.name}"


class StockMovement(models.Model):
    """
    Audit trail for every stock change.

    Rows are append-only. ``quantity`` is the unsigned magnitude and
    ``quantity_change`` carries the direction; the snapshots let a reader
    audit a product's history without replaying it. A compensating record
    points at the record it cancels through ``reversal_of``.
    """
    MovementType = MovementType

    movement_type = models.CharField(
        max_length=20,
        choices=MovementType.choices,
        help_text="Type of stock movement"
    )
    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name='movements',
        help_text="Product affected"
    )

    # Quantity tracking
    quantity = models.PositiveIntegerField(help_text="Magnitude of the change")
    quantity_change = models.IntegerField(help_text="Signed change (negative for outbound)")
    quantity_before = models.IntegerField(help_text="Stock level before movement")
    quantity_after = models.IntegerField(help_text="Stock level after movement")

    # Reference
    reference = models.CharField(
        max_length=200,
        blank=True,
        help_text="Human readable reference (document code, note, etc.)"
    )
    notes = models.TextField(blank=True)

    # Owning documents
    delivery = models.ForeignKey(
        Delivery,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='movements'
    )
    delivery_note = models.ForeignKey(
        DeliveryNote,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='movements'
    )
    production_log_item = models.ForeignKey(
        ProductionLogItem,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='movements'
    )
    management_stock_item = models.ForeignKey(
        ManagementStockItem,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='movements'
    )
    stock_opname_item = models.ForeignKey(
        StockOpnameItem,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='movements'
    )
    reversal_of = models.OneToOneField(
        'self',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='reversal',
        help_text="Movement this record compensates"
    )

    # Audit
    performed_by = models.CharField(
        max_length=255,
        blank=True,
        help_text="User who performed this movement"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['-created_at']),
            models.Index(fields=['product', '-created_at']),
            models.Index(fields=['movement_type']),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gt=0),
                name='movement_quantity_positive',
                violation_error_message='Movement quantity must be greater than zero'
            ),
            models.CheckConstraint(
                condition=(
                    models.Q(quantity_change=models.F('quantity'))
                    | models.Q(quantity_change=-models.F('quantity'))
                ),
                name='movement_change_matches_quantity',
                violation_error_message='Quantity change must equal the signed quantity'
            ),
            models.CheckConstraint(
                condition=(
                    models.Q(movement_type__in=INBOUND_MOVEMENT_TYPES, quantity_change__gt=0)
                    | models.Q(movement_type__in=OUTBOUND_MOVEMENT_TYPES, quantity_change__lt=0)
                    | models.Q(movement_type=MovementType.OPNAME_ADJUSTMENT)
                ),
                name='movement_direction_matches_type',
                violation_error_message='Quantity change direction does not match the movement type'
            ),
            models.CheckConstraint(
                condition=models.Q(
                    quantity_after=models.F('quantity_before') + models.F('quantity_change')
                ),
                name='movement_snapshot_consistent',
                violation_error_message='quantity_after must equal quantity_before + quantity_change'
            ),
            models.CheckConstraint(
                condition=models.Q(quantity_after__gte=0),
                name='movement_after_non_negative',
                violation_error_message='Stock cannot go below zero'
            ),
        ]

    def __str__(self):
        sign = '+' if self.quantity_change > 0 else ''
        return f"{self.get_movement_type_display()}: {sign}{self.quantity_change} {self.product.name}"

    @property
    def is_reversed(self):
        return StockMovement.objects.filter(reversal_of_id=self.pk).exists()

    def clean(self):
        super().clean()

        expected_after = self.quantity_before + self.quantity_change
        if self.quantity_after != expected_after:
            raise ValidationError({
                'quantity_after': f'Calculation error: {self.quantity_before} + {self.quantity_change} should equal {expected_after}, not {self.quantity_after}'
            })

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError({
                'movement': 'Stock movements are immutable and cannot be modified'
            })
        super().save(*args, **kwargs)
