from django.contrib import admin
from django.utils.html import format_html

from .models import (
    Customer, Product, Invoice, InvoiceItem, Payment, Delivery, DeliveryNote,
    DeliveryNoteItem, StockOpname, StockOpnameItem, ManagementStock,
    ManagementStockItem, ProductionLog, ProductionLogItem, StockMovement
)


def status_badge(obj, label):
    return format_html(
        '<span style="background-color: {}; color: white; padding: 3px 10px; border-radius: 3px;">{} {}</span>',
        obj.get_status_color(),
        obj.get_status_icon(),
        label
    )


class ReadOnlyAdminMixin:
    """
    Ledger documents change stock or balances and must go through the
    services, so the admin only displays them.
    """

    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class ReadOnlyInline(ReadOnlyAdminMixin, admin.TabularInline):
    extra = 0


@admin.register(Customer)
class CustomerAdmin(admin.ModelAdmin):
    list_display = ['code', 'name', 'phone', 'email', 'created_at']
    search_fields = ['code', 'name', 'phone', 'email']
    readonly_fields = ['created_at', 'updated_at']


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    """Catalog data is editable; the stock balance is not."""
    list_display = ['code', 'name', 'unit', 'price', 'stock_badge', 'min_stock', 'is_active']
    list_filter = ['is_active']
    search_fields = ['code', 'name']
    readonly_fields = ['current_stock', 'created_at', 'updated_at']

    def stock_badge(self, obj):
        colors = {
            'OUT_OF_STOCK': '#EF4444',
            'LOW_STOCK': '#F59E0B',
            'IN_STOCK': '#10B981',
        }
        return format_html(
            '<span style="color: {}; font-weight: bold;">{}</span>',
            colors.get(obj.stock_status, '#6B7280'),
            obj.current_stock
        )
    stock_badge.short_description = 'Stock'
    stock_badge.admin_order_field = 'current_stock'


class InvoiceItemInline(ReadOnlyInline):
    model = InvoiceItem
    fields = ['product', 'description', 'quantity', 'price', 'discount', 'total_price']


class PaymentInline(ReadOnlyInline):
    model = Payment
    fields = ['payment_code', 'payment_date', 'amount', 'method', 'status', 'performed_by']


@admin.register(Invoice)
class InvoiceAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = [
        'code', 'customer', 'invoice_type', 'status', 'invoice_date',
        'total_amount', 'paid_amount', 'remaining_amount', 'payment_badge'
    ]
    list_filter = ['invoice_type', 'status', 'payment_status', 'use_delivery_note']
    search_fields = ['code', 'customer__name', 'notes']
    date_hierarchy = 'invoice_date'
    inlines = [InvoiceItemInline, PaymentInline]

    def payment_badge(self, obj):
        return status_badge(obj, obj.get_payment_status_display())
    payment_badge.short_description = 'Payment'
    payment_badge.admin_order_field = 'payment_status'


@admin.register(Payment)
class PaymentAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ['payment_code', 'invoice', 'payment_date', 'amount', 'method', 'status', 'performed_by']
    list_filter = ['method', 'status']
    search_fields = ['payment_code', 'invoice__code', 'notes']
    date_hierarchy = 'payment_date'


class DeliveryDocumentAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_filter = ['status']
    search_fields = ['code', 'invoice__code']
    date_hierarchy = 'delivery_date'

    def delivery_badge(self, obj):
        return status_badge(obj, obj.get_status_display())
    delivery_badge.short_description = 'Status'
    delivery_badge.admin_order_field = 'status'


@admin.register(Delivery)
class DeliveryAdmin(DeliveryDocumentAdmin):
    list_display = ['code', 'invoice', 'delivery_date', 'delivery_badge', 'helper', 'completed_at']


class DeliveryNoteItemInline(ReadOnlyInline):
    model = DeliveryNoteItem
    fields = ['product', 'quantity', 'delivered_qty', 'notes']


@admin.register(DeliveryNote)
class DeliveryNoteAdmin(DeliveryDocumentAdmin):
    list_display = [
        'code', 'invoice', 'customer', 'delivery_date', 'delivery_badge',
        'driver_name', 'vehicle_number', 'completed_at'
    ]
    inlines = [DeliveryNoteItemInline]


class StockOpnameItemInline(ReadOnlyInline):
    model = StockOpnameItem
    fields = ['product', 'system_stock', 'physical_stock', 'difference', 'notes']


@admin.register(StockOpname)
class StockOpnameAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ['code', 'opname_date', 'status', 'conducted_by']
    list_filter = ['status']
    search_fields = ['code', 'notes']
    inlines = [StockOpnameItemInline]


class ManagementStockItemInline(ReadOnlyInline):
    model = ManagementStockItem
    fields = ['product', 'quantity', 'stock_opname_item', 'notes']


@admin.register(ManagementStock)
class ManagementStockAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ['code', 'management_date', 'status', 'stock_opname', 'produced_by']
    list_filter = ['status']
    search_fields = ['code', 'notes']
    inlines = [ManagementStockItemInline]


class ProductionLogItemInline(ReadOnlyInline):
    model = ProductionLogItem
    fields = ['product', 'quantity']


@admin.register(ProductionLog)
class ProductionLogAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ['id', 'production_date', 'produced_by', 'created_at']
    search_fields = ['notes', 'produced_by']
    inlines = [ProductionLogItemInline]


@admin.register(StockMovement)
class StockMovementAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = [
        'created_at', 'product', 'movement_type', 'change_display',
        'quantity_before', 'quantity_after', 'reference', 'performed_by'
    ]
    list_filter = ['movement_type']
    search_fields = ['product__code', 'product__name', 'reference', 'notes']
    date_hierarchy = 'created_at'

    def change_display(self, obj):
        color = '#10B981' if obj.quantity_change > 0 else '#EF4444'
        return format_html('<span style="color: {};">{}</span>', color, f'{obj.quantity_change:+d}')
    change_display.short_description = 'Change'
    change_display.admin_order_field = 'quantity_change'
