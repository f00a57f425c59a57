from decimal import Decimal

from rest_framework import serializers

from .choices import MANUAL_MOVEMENT_TYPES
from .models import (
    Customer, Product, StockMovement, Invoice, InvoiceItem, Payment,
    Delivery, DeliveryNote, DeliveryNoteItem, StockOpname, StockOpnameItem,
    ManagementStock, ManagementStockItem, ProductionLog, ProductionLogItem
)


# ============================================================================
# Catalog Serializers
# ============================================================================

class CustomerSerializer(serializers.ModelSerializer):
    class Meta:
        model = Customer
        fields = ['id', 'code', 'name', 'address', 'phone', 'email', 'created_at', 'updated_at']
        read_only_fields = ['id', 'created_at', 'updated_at']


class ProductSerializer(serializers.ModelSerializer):
    """
    Serializer for products with inventory details.
    Stock is read-only here; it only moves through the stock ledger.
    """
    stock_status = serializers.ReadOnlyField()
    is_low_stock = serializers.BooleanField(read_only=True)

    class Meta:
        model = Product
        fields = [
            'id', 'code', 'name', 'unit', 'price',
            'current_stock', 'min_stock', 'stock_status', 'is_low_stock',
            'is_active', 'created_at', 'updated_at'
        ]
        read_only_fields = ['id', 'current_stock', 'created_at', 'updated_at']

    def validate_price(self, value):
        if value < Decimal('0.00'):
            raise serializers.ValidationError("Price cannot be negative")
        return value


class StockMovementSerializer(serializers.ModelSerializer):
    """Serializer for the stock movement audit trail."""
    product_code = serializers.CharField(source='product.code', read_only=True)
    product_name = serializers.CharField(source='product.name', read_only=True)
    movement_type_display = serializers.CharField(source='get_movement_type_display', read_only=True)

    class Meta:
        model = StockMovement
        fields = [
            'id', 'movement_type', 'movement_type_display',
            'product', 'product_code', 'product_name',
            'quantity', 'quantity_change', 'quantity_before', 'quantity_after',
            'reference', 'notes', 'performed_by',
            'delivery', 'delivery_note', 'production_log_item',
            'management_stock_item', 'stock_opname_item', 'reversal_of',
            'created_at'
        ]
        read_only_fields = fields


class StockMovementCreateSerializer(serializers.Serializer):
    """
    Manual adjustment on the stock ledger.
    ADJUSTMENT_IN / ADJUSTMENT_OUT take a positive quantity; OPNAME_ADJUSTMENT is signed.
    """
    product_id = serializers.IntegerField()
    movement_type = serializers.ChoiceField(choices=[(t.value, t.label) for t in MANUAL_MOVEMENT_TYPES])
    quantity = serializers.IntegerField()
    reference = serializers.CharField(max_length=200, required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)

    def validate(self, data):
        quantity = data['quantity']
        if quantity == 0:
            raise serializers.ValidationError({'quantity': 'Quantity must not be zero'})
        if data['movement_type'] != StockMovement.MovementType.OPNAME_ADJUSTMENT and quantity < 0:
            raise serializers.ValidationError({'quantity': 'Quantity must be greater than zero'})
        return data


# ============================================================================
# Invoice & Payment Serializers
# ============================================================================

class InvoiceItemSerializer(serializers.ModelSerializer):
    product_code = serializers.CharField(source='product.code', read_only=True, allow_null=True)
    product_name = serializers.CharField(source='product.name', read_only=True, allow_null=True)

    class Meta:
        model = InvoiceItem
        fields = [
            'id', 'product', 'product_code', 'product_name', 'description',
            'quantity', 'price', 'discount', 'total_price'
        ]
        read_only_fields = fields


class InvoiceSerializer(serializers.ModelSerializer):
    items = InvoiceItemSerializer(many=True, read_only=True)
    customer_name = serializers.CharField(source='customer.name', read_only=True, allow_null=True)
    status_display = serializers.ReadOnlyField()

    class Meta:
        model = Invoice
        fields = [
            'id', 'code', 'customer', 'customer_name', 'invoice_type', 'status',
            'invoice_date', 'due_date', 'use_delivery_note',
            'subtotal', 'tax_percentage', 'tax', 'discount', 'total_amount',
            'paid_amount', 'remaining_amount', 'payment_status', 'status_display',
            'items', 'notes', 'created_by', 'created_at', 'updated_at'
        ]
        read_only_fields = fields


class InvoiceItemInputSerializer(serializers.Serializer):
    product_id = serializers.IntegerField(required=False, allow_null=True)
    description = serializers.CharField(max_length=255, required=False, allow_blank=True)
    quantity = serializers.IntegerField(min_value=1)
    price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.00'))
    discount = serializers.DecimalField(
        max_digits=12, decimal_places=2, min_value=Decimal('0.00'), required=False, default=Decimal('0.00')
    )


class InvoiceCreateSerializer(serializers.Serializer):
    code = serializers.CharField(max_length=50, required=False, allow_blank=True)
    customer_id = serializers.IntegerField(required=False, allow_null=True)
    invoice_type = serializers.ChoiceField(choices=Invoice.InvoiceType.choices, default=Invoice.InvoiceType.PRODUCT)
    status = serializers.ChoiceField(
        choices=[Invoice.Status.DRAFT, Invoice.Status.SENT], default=Invoice.Status.DRAFT
    )
    tax_percentage = serializers.DecimalField(
        max_digits=5, decimal_places=2, min_value=Decimal('0'), max_value=Decimal('100'), default=Decimal('0.00')
    )
    discount = serializers.DecimalField(
        max_digits=14, decimal_places=2, min_value=Decimal('0.00'), default=Decimal('0.00')
    )
    invoice_date = serializers.DateTimeField(required=False)
    due_date = serializers.DateTimeField(required=False, allow_null=True)
    use_delivery_note = serializers.BooleanField(default=False)
    notes = serializers.CharField(required=False, allow_blank=True)
    items = InvoiceItemInputSerializer(many=True, allow_empty=False)


class InvoiceStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Invoice.Status.choices)


class PaymentSerializer(serializers.ModelSerializer):
    invoice_code = serializers.CharField(source='invoice.code', read_only=True)
    method_display = serializers.CharField(source='get_method_display', read_only=True)

    class Meta:
        model = Payment
        fields = [
            'id', 'payment_code', 'invoice', 'invoice_code', 'payment_date',
            'amount', 'method', 'method_display', 'status', 'notes', 'proof_url',
            'performed_by', 'created_at', 'updated_at'
        ]
        read_only_fields = fields


class PaymentCreateSerializer(serializers.Serializer):
    """
    Serializer for recording a payment against an invoice.
    """
    invoice_id = serializers.IntegerField()
    amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    method = serializers.ChoiceField(choices=Payment.PaymentMethod.choices, default=Payment.PaymentMethod.CASH)
    status = serializers.ChoiceField(
        choices=[Payment.Status.PENDING, Payment.Status.CLEARED], default=Payment.Status.PENDING
    )
    payment_date = serializers.DateTimeField(required=False)
    payment_code = serializers.CharField(max_length=50, required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)
    proof_url = serializers.CharField(max_length=500, required=False, allow_blank=True)

    def validate_amount(self, value):
        """Ensure amount is positive"""
        if value <= Decimal('0.00'):
            raise serializers.ValidationError("Amount must be greater than zero")
        return value


class PaymentUpdateSerializer(PaymentCreateSerializer):
    invoice_id = serializers.IntegerField(required=False)
    amount = serializers.DecimalField(max_digits=14, decimal_places=2, required=False)
    method = serializers.ChoiceField(choices=Payment.PaymentMethod.choices, required=False)
    status = serializers.ChoiceField(
        choices=[Payment.Status.PENDING, Payment.Status.CLEARED], required=False
    )
    payment_code = None


# ============================================================================
# Delivery Serializers
# ============================================================================

class DeliverySerializer(serializers.ModelSerializer):
    invoice_code = serializers.CharField(source='invoice.code', read_only=True)
    status_display = serializers.ReadOnlyField()
    is_locked = serializers.BooleanField(read_only=True)

    class Meta:
        model = Delivery
        fields = [
            'id', 'code', 'invoice', 'invoice_code', 'helper', 'delivery_date',
            'status', 'status_display', 'is_locked', 'completed_at',
            'notes', 'return_reason', 'created_at', 'updated_at'
        ]
        read_only_fields = fields


class DeliveryCreateSerializer(serializers.Serializer):
    invoice_id = serializers.IntegerField()
    code = serializers.CharField(max_length=50, required=False, allow_blank=True)
    delivery_date = serializers.DateTimeField(required=False)
    helper = serializers.CharField(max_length=255, required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)


class DeliveryStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Delivery.Status.choices)
    notes = serializers.CharField(required=False, allow_blank=True)
    return_reason = serializers.CharField(required=False, allow_blank=True)


class DeliveryNoteItemSerializer(serializers.ModelSerializer):
    product_code = serializers.CharField(source='product.code', read_only=True)
    product_name = serializers.CharField(source='product.name', read_only=True)

    class Meta:
        model = DeliveryNoteItem
        fields = ['id', 'product', 'product_code', 'product_name', 'quantity', 'delivered_qty', 'notes']
        read_only_fields = fields


class DeliveryNoteSerializer(serializers.ModelSerializer):
    items = DeliveryNoteItemSerializer(many=True, read_only=True)
    invoice_code = serializers.CharField(source='invoice.code', read_only=True)
    customer_name = serializers.CharField(source='customer.name', read_only=True, allow_null=True)
    status_display = serializers.ReadOnlyField()
    is_locked = serializers.BooleanField(read_only=True)

    class Meta:
        model = DeliveryNote
        fields = [
            'id', 'code', 'invoice', 'invoice_code', 'customer', 'customer_name',
            'delivery_date', 'driver_name', 'vehicle_number', 'warehouse_user',
            'status', 'status_display', 'is_locked', 'completed_at',
            'notes', 'return_reason', 'items', 'created_at', 'updated_at'
        ]
        read_only_fields = fields


class DeliveryNoteCreateSerializer(serializers.Serializer):
    invoice_id = serializers.IntegerField()
    code = serializers.CharField(max_length=50, required=False, allow_blank=True)
    delivery_date = serializers.DateTimeField(required=False)
    driver_name = serializers.CharField(max_length=100, required=False, allow_blank=True)
    vehicle_number = serializers.CharField(max_length=50, required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)


class DeliveryNoteUpdateSerializer(serializers.Serializer):
    delivery_date = serializers.DateTimeField(required=False)
    driver_name = serializers.CharField(max_length=100, required=False, allow_blank=True)
    vehicle_number = serializers.CharField(max_length=50, required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)


# ============================================================================
# Stock Opname & Management Stock Serializers
# ============================================================================

class StockOpnameItemSerializer(serializers.ModelSerializer):
    product_code = serializers.CharField(source='product.code', read_only=True)
    product_name = serializers.CharField(source='product.name', read_only=True)

    class Meta:
        model = StockOpnameItem
        fields = [
            'id', 'product', 'product_code', 'product_name',
            'system_stock', 'physical_stock', 'difference', 'notes'
        ]
        read_only_fields = fields


class StockOpnameSerializer(serializers.ModelSerializer):
    items = StockOpnameItemSerializer(many=True, read_only=True)
    is_consumed = serializers.BooleanField(read_only=True)

    class Meta:
        model = StockOpname
        fields = [
            'id', 'code', 'opname_date', 'status', 'is_consumed',
            'notes', 'conducted_by', 'items', 'created_at', 'updated_at'
        ]
        read_only_fields = fields


class ReconciledOpnameSerializer(StockOpnameSerializer):
    """Reconciled opname with only the lines whose count differs."""
    items = StockOpnameItemSerializer(source='differing_items', many=True, read_only=True)


class StockOpnameItemInputSerializer(serializers.Serializer):
    product_id = serializers.IntegerField()
    physical_stock = serializers.IntegerField(min_value=0)
    system_stock = serializers.IntegerField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True)


class StockOpnameCreateSerializer(serializers.Serializer):
    code = serializers.CharField(max_length=50, required=False, allow_blank=True)
    opname_date = serializers.DateTimeField(required=False)
    notes = serializers.CharField(required=False, allow_blank=True)
    items = StockOpnameItemInputSerializer(many=True, allow_empty=False)


class StockOpnameUpdateSerializer(serializers.Serializer):
    opname_date = serializers.DateTimeField(required=False)
    notes = serializers.CharField(required=False, allow_blank=True)
    items = StockOpnameItemInputSerializer(many=True, allow_empty=False, required=False)


class ManagementStockItemSerializer(serializers.ModelSerializer):
    product_code = serializers.CharField(source='product.code', read_only=True)
    product_name = serializers.CharField(source='product.name', read_only=True)

    class Meta:
        model = ManagementStockItem
        fields = ['id', 'product', 'product_code', 'product_name', 'quantity', 'stock_opname_item', 'notes']
        read_only_fields = fields


class ManagementStockSerializer(serializers.ModelSerializer):
    items = ManagementStockItemSerializer(many=True, read_only=True)
    stock_opname_code = serializers.CharField(source='stock_opname.code', read_only=True, allow_null=True)

    class Meta:
        model = ManagementStock
        fields = [
            'id', 'code', 'management_date', 'status', 'stock_opname', 'stock_opname_code',
            'notes', 'produced_by', 'items', 'created_at', 'updated_at'
        ]
        read_only_fields = fields


class ManagementStockItemInputSerializer(serializers.Serializer):
    product_id = serializers.IntegerField()
    quantity = serializers.IntegerField()
    stock_opname_item_id = serializers.IntegerField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True)


class ManagementStockCreateSerializer(serializers.Serializer):
    code = serializers.CharField(max_length=50, required=False, allow_blank=True)
    status = serializers.ChoiceField(choices=ManagementStock.Status.choices)
    stock_opname_id = serializers.IntegerField(required=False, allow_null=True)
    management_date = serializers.DateTimeField(required=False)
    notes = serializers.CharField(required=False, allow_blank=True)
    items = ManagementStockItemInputSerializer(many=True, required=False)

    def validate(self, data):
        """Cross-field validation"""
        if data['status'] == ManagementStock.Status.OPNAME_ADJUSTMENT:
            if not data.get('stock_opname_id'):
                raise serializers.ValidationError({'stock_opname_id': 'Opname adjustments must reference a stock opname'})
            return data

        items = data.get('items')
        if not items:
            raise serializers.ValidationError({'items': 'At least one item is required'})
        if any(item['quantity'] <= 0 for item in items):
            raise serializers.ValidationError({'items': 'Quantities must be greater than zero'})
        return data


class ManagementStockUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(
        choices=[ManagementStock.Status.IN, ManagementStock.Status.OUT], required=False
    )
    management_date = serializers.DateTimeField(required=False)
    notes = serializers.CharField(required=False, allow_blank=True)
    items = ManagementStockItemInputSerializer(many=True, allow_empty=False, required=False)


# ============================================================================
# Production Serializers
# ============================================================================

class ProductionLogItemSerializer(serializers.ModelSerializer):
    product_code = serializers.CharField(source='product.code', read_only=True)
    product_name = serializers.CharField(source='product.name', read_only=True)

    class Meta:
        model = ProductionLogItem
        fields = ['id', 'product', 'product_code', 'product_name', 'quantity', 'notes']
        read_only_fields = fields


class ProductionLogSerializer(serializers.ModelSerializer):
    items = ProductionLogItemSerializer(many=True, read_only=True)

    class Meta:
        model = ProductionLog
        fields = ['id', 'production_date', 'notes', 'produced_by', 'items', 'created_at', 'updated_at']
        read_only_fields = fields


class ProductionItemInputSerializer(serializers.Serializer):
    product_id = serializers.IntegerField()
    quantity = serializers.IntegerField(min_value=1)
    notes = serializers.CharField(required=False, allow_blank=True)


class ProductionLogCreateSerializer(serializers.Serializer):
    production_date = serializers.DateTimeField(required=False)
    notes = serializers.CharField(required=False, allow_blank=True)
    items = ProductionItemInputSerializer(many=True, allow_empty=False)


class ProductionLogUpdateSerializer(serializers.Serializer):
    production_date = serializers.DateTimeField(required=False)
    notes = serializers.CharField(required=False, allow_blank=True)
    items = ProductionItemInputSerializer(many=True, allow_empty=False, required=False)
