from django.db.models import F
from django_filters import rest_framework as filters

from .models import (
    Product, StockMovement, Invoice, Payment, Delivery, DeliveryNote,
    StockOpname, ManagementStock, ProductionLog
)


class DateRangeFilterSet(filters.FilterSet):
    """
    Shared date range filters.
    Subclasses set ``date_field`` to the model's document date.
    """
    date_field = 'created_at'

    start_date = filters.DateFilter(
        method='filter_start_date',
        help_text="On or after this date (YYYY-MM-DD)"
    )
    end_date = filters.DateFilter(
        method='filter_end_date',
        help_text="On or before this date (YYYY-MM-DD)"
    )

    def filter_start_date(self, queryset, name, value):
        return queryset.filter(**{f'{self.date_field}__date__gte': value})

    def filter_end_date(self, queryset, name, value):
        return queryset.filter(**{f'{self.date_field}__date__lte': value})


class ProductFilter(filters.FilterSet):
    """
    Available filters:
    - is_active
    - stock: OUT_OF_STOCK, LOW_STOCK, IN_STOCK
    """
    stock = filters.ChoiceFilter(
        choices=[
            ('OUT_OF_STOCK', 'Out of stock'),
            ('LOW_STOCK', 'Low stock'),
            ('IN_STOCK', 'In stock'),
        ],
        method='filter_stock',
        help_text="Filter by stock status"
    )

    class Meta:
        model = Product
        fields = ['is_active']

    def filter_stock(self, queryset, name, value):
        if value == 'OUT_OF_STOCK':
            return queryset.filter(current_stock__lte=0)
        if value == 'LOW_STOCK':
            return queryset.filter(current_stock__gt=0, current_stock__lte=F('min_stock'))
        return queryset.filter(current_stock__gt=F('min_stock'))


class StockMovementFilter(DateRangeFilterSet):
    """
    Available filters:
    - product, movement_type
    - is_reversal: only compensating records (or only originals)
    - start_date, end_date
    """
    is_reversal = filters.BooleanFilter(
        field_name='reversal_of',
        lookup_expr='isnull',
        exclude=True,
        help_text="True for reversal records, false for original movements"
    )

    class Meta:
        model = StockMovement
        fields = ['product', 'movement_type', 'delivery', 'delivery_note']


class InvoiceFilter(DateRangeFilterSet):
    date_field = 'invoice_date'

    min_remaining = filters.NumberFilter(
        field_name="remaining_amount",
        lookup_expr='gte',
        help_text="Minimum remaining amount"
    )
    max_remaining = filters.NumberFilter(
        field_name="remaining_amount",
        lookup_expr='lte',
        help_text="Maximum remaining amount"
    )

    class Meta:
        model = Invoice
        fields = ['customer', 'invoice_type', 'status', 'payment_status', 'use_delivery_note']


class PaymentFilter(DateRangeFilterSet):
    date_field = 'payment_date'

    min_amount = filters.NumberFilter(
        field_name="amount",
        lookup_expr='gte',
        help_text="Minimum payment amount"
    )
    max_amount = filters.NumberFilter(
        field_name="amount",
        lookup_expr='lte',
        help_text="Maximum payment amount"
    )

    class Meta:
        model = Payment
        fields = ['invoice', 'method', 'status']


class DeliveryFilter(DateRangeFilterSet):
    date_field = 'delivery_date'

    class Meta:
        model = Delivery
        fields = ['invoice', 'status']


class DeliveryNoteFilter(DateRangeFilterSet):
    date_field = 'delivery_date'

    class Meta:
        model = DeliveryNote
        fields = ['invoice', 'customer', 'status']


class StockOpnameFilter(DateRangeFilterSet):
    date_field = 'opname_date'

    class Meta:
        model = StockOpname
        fields = ['status']


class ManagementStockFilter(DateRangeFilterSet):
    date_field = 'management_date'

    class Meta:
        model = ManagementStock
        fields = ['status', 'stock_opname']


class ProductionLogFilter(DateRangeFilterSet):
    date_field = 'production_date'

    class Meta:
        model = ProductionLog
        fields = []
