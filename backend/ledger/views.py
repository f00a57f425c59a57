import logging

from django.db.models import F, ProtectedError
from django.http import HttpResponse
from django.utils import timezone
from django.utils.dateparse import parse_date
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import filters, generics, status
from rest_framework.decorators import api_view
from rest_framework.response import Response

from . import actions
from .filters import (
    DeliveryFilter, DeliveryNoteFilter, InvoiceFilter, ManagementStockFilter,
    PaymentFilter, ProductFilter, ProductionLogFilter, StockMovementFilter,
    StockOpnameFilter
)
from .models import (
    Customer, Delivery, DeliveryNote, Invoice, ManagementStock, Payment,
    Product, ProductionLog, StockMovement, StockOpname
)
from .serializers import (
    CustomerSerializer, DeliveryCreateSerializer, DeliveryNoteCreateSerializer,
    DeliveryNoteSerializer, DeliveryNoteUpdateSerializer, DeliverySerializer,
    DeliveryStatusSerializer, InvoiceCreateSerializer, InvoiceSerializer,
    InvoiceStatusSerializer, ManagementStockCreateSerializer,
    ManagementStockSerializer, ManagementStockUpdateSerializer,
    PaymentCreateSerializer, PaymentSerializer, PaymentUpdateSerializer,
    ProductionLogCreateSerializer, ProductionLogSerializer,
    ProductionLogUpdateSerializer, ProductSerializer, ReconciledOpnameSerializer,
    StockMovementCreateSerializer, StockMovementSerializer,
    StockOpnameCreateSerializer, StockOpnameSerializer,
    StockOpnameUpdateSerializer
)
from .services import MovementExportService, StockOpnameService

logger = logging.getLogger(__name__)

# Failure code -> HTTP status. Anything not listed is a client error.
STATUS_FOR_CODE = {
    'not_found': status.HTTP_404_NOT_FOUND,
    'invalid_state': status.HTTP_409_CONFLICT,
    'duplicate_delivery': status.HTTP_409_CONFLICT,
    'already_consumed': status.HTTP_409_CONFLICT,
    actions.DATABASE_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
    actions.INTERNAL_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def get_actor(request):
    return request.user.get_username() if request.user.is_authenticated else ''


def envelope_response(result, success_status=status.HTTP_200_OK):
    """Translate an action envelope into an HTTP response."""
    if result['success']:
        if result['data'] is None:
            return Response(status=status.HTTP_204_NO_CONTENT)
        return Response(result['data'], status=success_status)
    return Response(
        {'error': result['error'], 'code': result['code']},
        status=STATUS_FOR_CODE.get(result['code'], status.HTTP_400_BAD_REQUEST)
    )


class LedgerListCreateView(generics.ListAPIView):
    """
    List documents with filtering; POST validates with ``create_serializer_class``
    and hands the data to ``create_action``.
    """
    filter_backends = [DjangoFilterBackend, filters.SearchFilter, filters.OrderingFilter]
    create_serializer_class = None
    create_action = None

    def post(self, request, *args, **kwargs):
        serializer = self.create_serializer_class(data=request.data)
        if not serializer.is_valid():
            return Response({'error': serializer.errors}, status=status.HTTP_400_BAD_REQUEST)
        result = self.create_action(serializer.validated_data, performed_by=get_actor(request))
        return envelope_response(result, status.HTTP_201_CREATED)


class LedgerUpdateMixin:
    update_serializer_class = None
    update_action = None

    def patch(self, request, pk, *args, **kwargs):
        serializer = self.update_serializer_class(data=request.data, partial=True)
        if not serializer.is_valid():
            return Response({'error': serializer.errors}, status=status.HTTP_400_BAD_REQUEST)
        result = self.update_action(pk, serializer.validated_data, performed_by=get_actor(request))
        return envelope_response(result)


class LedgerDestroyMixin:
    delete_action = None

    def delete(self, request, pk, *args, **kwargs):
        return envelope_response(self.delete_action(pk))


class LedgerStatusView(generics.GenericAPIView):
    """POST a status change for one document."""
    status_serializer_class = None
    status_action = None

    def post(self, request, pk, *args, **kwargs):
        serializer = self.status_serializer_class(data=request.data)
        if not serializer.is_valid():
            return Response({'error': serializer.errors}, status=status.HTTP_400_BAD_REQUEST)
        data = serializer.validated_data
        result = self.status_action(
            pk,
            data.pop('status'),
            performed_by=get_actor(request),
            **data
        )
        return envelope_response(result)


# ============================================================================
# Catalog
# ============================================================================

class CustomerListView(generics.ListCreateAPIView):
    queryset = Customer.objects.all()
    serializer_class = CustomerSerializer
    filter_backends = [filters.SearchFilter, filters.OrderingFilter]
    search_fields = ['code', 'name', 'phone', 'email']
    ordering_fields = ['code', 'name', 'created_at']
    ordering = ['name']


class CustomerDetailView(generics.RetrieveUpdateDestroyAPIView):
    queryset = Customer.objects.all()
    serializer_class = CustomerSerializer

    def destroy(self, request, *args, **kwargs):
        try:
            return super().destroy(request, *args, **kwargs)
        except ProtectedError:
            return Response(
                {'error': 'Customer is referenced by invoices and cannot be deleted', 'code': 'invalid_state'},
                status=status.HTTP_409_CONFLICT
            )


class ProductListView(generics.ListCreateAPIView):
    """
    List and create products.

    Search fields:
    - code, name

    Filters:
    - is_active: Boolean (true/false)
    - stock: OUT_OF_STOCK, LOW_STOCK, IN_STOCK

    New products start at zero stock; opening balances are booked as
    ADJUSTMENT_IN movements.
    """
    queryset = Product.objects.all()
    serializer_class = ProductSerializer
    filter_backends = [DjangoFilterBackend, filters.SearchFilter, filters.OrderingFilter]
    filterset_class = ProductFilter
    search_fields = ['code', 'name']
    ordering_fields = ['code', 'name', 'price', 'current_stock', 'created_at']
    ordering = ['code']


class ProductDetailView(generics.RetrieveUpdateDestroyAPIView):
    """
    Retrieve, update, or delete a product.

    DELETE is refused once the product has ledger history.
    """
    queryset = Product.objects.all()
    serializer_class = ProductSerializer

    def destroy(self, request, *args, **kwargs):
        try:
            return super().destroy(request, *args, **kwargs)
        except ProtectedError:
            return Response(
                {'error': 'Product has stock history and cannot be deleted', 'code': 'invalid_state'},
                status=status.HTTP_409_CONFLICT
            )


@api_view(['GET'])
def product_summary(request):
    """
    Stock overview for active products.

    Returns:
    - total_products, active_products
    - out_of_stock: active products with no stock
    - low_stock: active products at or below their minimum
    """
    products = Product.objects.filter(is_active=True)
    return Response({
        'total_products': Product.objects.count(),
        'active_products': products.count(),
        'out_of_stock': products.filter(current_stock__lte=0).count(),
        'low_stock': products.filter(current_stock__gt=0, current_stock__lte=F('min_stock')).count(),
    })


# ============================================================================
# Stock movements
# ============================================================================

class StockMovementListView(LedgerListCreateView):
    """
    GET: the append-only stock ledger, newest first.
    POST: record a manual adjustment (ADJUSTMENT_IN, ADJUSTMENT_OUT, OPNAME_ADJUSTMENT).
    """
    queryset = StockMovement.objects.select_related('product')
    serializer_class = StockMovementSerializer
    filterset_class = StockMovementFilter
    search_fields = ['reference', 'notes', 'product__code', 'product__name']
    ordering_fields = ['created_at', 'quantity', 'movement_type']
    ordering = ['-created_at', '-id']
    create_serializer_class = StockMovementCreateSerializer
    create_action = staticmethod(actions.create_stock_movement)


class StockMovementDetailView(LedgerDestroyMixin, generics.RetrieveAPIView):
    """
    DELETE removes a manual adjustment and answers with the product's new balance.
    """
    queryset = StockMovement.objects.select_related('product')
    serializer_class = StockMovementSerializer
    delete_action = staticmethod(actions.delete_stock_movement)


# ============================================================================
# Invoices & payments
# ============================================================================

class InvoiceListView(LedgerListCreateView):
    queryset = Invoice.objects.select_related('customer').prefetch_related('items__product')
    serializer_class = InvoiceSerializer
    filterset_class = InvoiceFilter
    search_fields = ['code', 'customer__name', 'notes']
    ordering_fields = ['invoice_date', 'due_date', 'total_amount', 'remaining_amount', 'created_at']
    ordering = ['-invoice_date']
    create_serializer_class = InvoiceCreateSerializer
    create_action = staticmethod(actions.create_invoice)


class InvoiceDetailView(LedgerDestroyMixin, generics.RetrieveAPIView):
    queryset = Invoice.objects.select_related('customer').prefetch_related('items__product')
    serializer_class = InvoiceSerializer
    delete_action = staticmethod(actions.delete_invoice)


class InvoiceStatusView(LedgerStatusView):
    """
    POST /api/invoices/<pk>/status/
    {"status": "SENT"}
    """
    status_serializer_class = InvoiceStatusSerializer
    status_action = staticmethod(actions.update_invoice_status)


class PaymentListView(LedgerListCreateView):
    queryset = Payment.objects.select_related('invoice')
    serializer_class = PaymentSerializer
    filterset_class = PaymentFilter
    search_fields = ['payment_code', 'invoice__code', 'notes']
    ordering_fields = ['payment_date', 'amount', 'created_at']
    ordering = ['-payment_date']
    create_serializer_class = PaymentCreateSerializer
    create_action = staticmethod(actions.create_payment)


class PaymentDetailView(LedgerUpdateMixin, LedgerDestroyMixin, generics.RetrieveAPIView):
    """
    PATCH: change amount, method, status or move the payment to another invoice.
    DELETE: remove the payment; answers with the invoice's new balance.
    """
    queryset = Payment.objects.select_related('invoice')
    serializer_class = PaymentSerializer
    update_serializer_class = PaymentUpdateSerializer
    update_action = staticmethod(actions.update_payment)
    delete_action = staticmethod(actions.delete_payment)


# ============================================================================
# Deliveries & delivery notes
# ============================================================================

class DeliveryListView(LedgerListCreateView):
    queryset = Delivery.objects.select_related('invoice')
    serializer_class = DeliverySerializer
    filterset_class = DeliveryFilter
    search_fields = ['code', 'invoice__code', 'helper']
    ordering_fields = ['delivery_date', 'created_at']
    ordering = ['-delivery_date']
    create_serializer_class = DeliveryCreateSerializer
    create_action = staticmethod(actions.create_delivery)


class DeliveryDetailView(LedgerDestroyMixin, generics.RetrieveAPIView):
    queryset = Delivery.objects.select_related('invoice')
    serializer_class = DeliverySerializer
    delete_action = staticmethod(actions.delete_delivery)


class DeliveryStatusView(LedgerStatusView):
    """
    POST /api/deliveries/<pk>/status/
    {"status": "RETURNED", "return_reason": "Damaged packaging"}
    """
    status_serializer_class = DeliveryStatusSerializer
    status_action = staticmethod(actions.update_delivery_status)


class DeliveryNoteListView(LedgerListCreateView):
    queryset = DeliveryNote.objects.select_related('invoice', 'customer').prefetch_related('items__product')
    serializer_class = DeliveryNoteSerializer
    filterset_class = DeliveryNoteFilter
    search_fields = ['code', 'invoice__code', 'driver_name', 'vehicle_number']
    ordering_fields = ['delivery_date', 'created_at']
    ordering = ['-delivery_date']
    create_serializer_class = DeliveryNoteCreateSerializer
    create_action = staticmethod(actions.create_delivery_note)


class DeliveryNoteDetailView(LedgerUpdateMixin, LedgerDestroyMixin, generics.RetrieveAPIView):
    queryset = DeliveryNote.objects.select_related('invoice', 'customer').prefetch_related('items__product')
    serializer_class = DeliveryNoteSerializer
    update_serializer_class = DeliveryNoteUpdateSerializer
    update_action = staticmethod(actions.update_delivery_note)
    delete_action = staticmethod(actions.delete_delivery_note)


class DeliveryNoteStatusView(LedgerStatusView):
    status_serializer_class = DeliveryStatusSerializer
    status_action = staticmethod(actions.update_delivery_note_status)


# ============================================================================
# Stock opname, management stock, production
# ============================================================================

class StockOpnameListView(LedgerListCreateView):
    queryset = StockOpname.objects.prefetch_related('items__product')
    serializer_class = StockOpnameSerializer
    filterset_class = StockOpnameFilter
    search_fields = ['code', 'notes', 'conducted_by']
    ordering_fields = ['opname_date', 'created_at']
    ordering = ['-opname_date']
    create_serializer_class = StockOpnameCreateSerializer
    create_action = staticmethod(actions.create_stock_opname)


class StockOpnameDetailView(LedgerUpdateMixin, LedgerDestroyMixin, generics.RetrieveAPIView):
    queryset = StockOpname.objects.prefetch_related('items__product')
    serializer_class = StockOpnameSerializer
    update_serializer_class = StockOpnameUpdateSerializer
    update_action = staticmethod(actions.update_stock_opname)
    delete_action = staticmethod(actions.delete_stock_opname)


class ReconciledOpnameListView(generics.ListAPIView):
    """
    Opnames waiting for their stock adjustment, with only the lines whose
    physical count differs from the system count.
    """
    serializer_class = ReconciledOpnameSerializer

    def get_queryset(self):
        return StockOpnameService.reconciled_opnames().order_by('-opname_date')


class ManagementStockListView(LedgerListCreateView):
    queryset = ManagementStock.objects.select_related('stock_opname').prefetch_related('items__product')
    serializer_class = ManagementStockSerializer
    filterset_class = ManagementStockFilter
    search_fields = ['code', 'notes']
    ordering_fields = ['management_date', 'created_at']
    ordering = ['-management_date']
    create_serializer_class = ManagementStockCreateSerializer
    create_action = staticmethod(actions.create_management_stock)


class ManagementStockDetailView(LedgerUpdateMixin, LedgerDestroyMixin, generics.RetrieveAPIView):
    queryset = ManagementStock.objects.select_related('stock_opname').prefetch_related('items__product')
    serializer_class = ManagementStockSerializer
    update_serializer_class = ManagementStockUpdateSerializer
    update_action = staticmethod(actions.update_management_stock)
    delete_action = staticmethod(actions.delete_management_stock)


class ProductionLogListView(LedgerListCreateView):
    queryset = ProductionLog.objects.prefetch_related('items__product')
    serializer_class = ProductionLogSerializer
    filterset_class = ProductionLogFilter
    search_fields = ['notes', 'produced_by']
    ordering_fields = ['production_date', 'created_at']
    ordering = ['-production_date']
    create_serializer_class = ProductionLogCreateSerializer
    create_action = staticmethod(actions.create_production_log)


class ProductionLogDetailView(LedgerUpdateMixin, LedgerDestroyMixin, generics.RetrieveAPIView):
    queryset = ProductionLog.objects.prefetch_related('items__product')
    serializer_class = ProductionLogSerializer
    update_serializer_class = ProductionLogUpdateSerializer
    update_action = staticmethod(actions.update_production_log)
    delete_action = staticmethod(actions.delete_production_log)


# ============================================================================
# Exports
# ============================================================================

def _export_range(request):
    """
    Read start_date / end_date / product from the query string.

    Returns (start_date, end_date, product_id, error_response).
    Defaults to today when no dates are given.
    """
    start_date_str = request.query_params.get('start_date')
    end_date_str = request.query_params.get('end_date')
    product_id = request.query_params.get('product')

    if start_date_str or end_date_str:
        start_date = parse_date(start_date_str or '')
        end_date = parse_date(end_date_str or '')
        if not start_date or not end_date:
            return None, None, None, Response(
                {'error': 'Invalid date format. Use YYYY-MM-DD for both start_date and end_date'},
                status=status.HTTP_400_BAD_REQUEST
            )
        if start_date > end_date:
            return None, None, None, Response(
                {'error': 'start_date must be before or equal to end_date'},
                status=status.HTTP_400_BAD_REQUEST
            )
    else:
        start_date = end_date = timezone.localdate()

    if product_id and not product_id.isdigit():
        return None, None, None, Response(
            {'error': 'product must be a numeric id'},
            status=status.HTTP_400_BAD_REQUEST
        )

    return start_date, end_date, int(product_id) if product_id else None, None


@api_view(['GET'])
def movements_csv_export(request):
    """
    Export stock movements to CSV.

    Query params:
    - start_date, end_date: range to export (YYYY-MM-DD); defaults to today
    - product: restrict to one product id

    Example:
    GET /api/exports/movements/csv/?start_date=2025-10-01&end_date=2025-10-09
    """
    start_date, end_date, product_id, error = _export_range(request)
    if error:
        return error

    movements = MovementExportService.get_movements_for_date_range(start_date, end_date, product_id)
    csv_buffer = MovementExportService.export_to_csv(movements)

    filename = f'stock_movements_{start_date}_to_{end_date}.csv'
    response = HttpResponse(csv_buffer.getvalue(), content_type='text/csv')
    response['Content-Disposition'] = f'attachment; filename="{filename}"'
    return response


@api_view(['GET'])
def movements_xlsx_export(request):
    """
    Export stock movements to XLSX (Excel) with formatting.

    Same query params as the CSV export.
    """
    start_date, end_date, product_id, error = _export_range(request)
    if error:
        return error

    movements = MovementExportService.get_movements_for_date_range(start_date, end_date, product_id)
    xlsx_buffer = MovementExportService.export_to_xlsx(movements)

    filename = f'stock_movements_{start_date}_to_{end_date}.xlsx'
    response = HttpResponse(
        xlsx_buffer.getvalue(),
        content_type='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
    )
    response['Content-Disposition'] = f'attachment; filename="{filename}"'
    return response
