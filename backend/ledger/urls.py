from django.urls import path
from .views import (
    CustomerListView, CustomerDetailView,
    ProductListView, ProductDetailView, product_summary,
    StockMovementListView, StockMovementDetailView,
    InvoiceListView, InvoiceDetailView, InvoiceStatusView,
    PaymentListView, PaymentDetailView,
    DeliveryListView, DeliveryDetailView, DeliveryStatusView,
    DeliveryNoteListView, DeliveryNoteDetailView, DeliveryNoteStatusView,
    StockOpnameListView, StockOpnameDetailView, ReconciledOpnameListView,
    ManagementStockListView, ManagementStockDetailView,
    ProductionLogListView, ProductionLogDetailView,
    movements_csv_export, movements_xlsx_export
)

urlpatterns = [
    # Catalog
    path('customers/', CustomerListView.as_view(), name='customer-list'),
    path('customers/<int:pk>/', CustomerDetailView.as_view(), name='customer-detail'),
    path('products/', ProductListView.as_view(), name='product-list'),
    path('products/summary/', product_summary, name='product-summary'),
    path('products/<int:pk>/', ProductDetailView.as_view(), name='product-detail'),

    # Stock ledger
    path('stock/movements/', StockMovementListView.as_view(), name='stock-movement-list'),
    path('stock/movements/<int:pk>/', StockMovementDetailView.as_view(), name='stock-movement-detail'),

    # Invoices & payments
    path('invoices/', InvoiceListView.as_view(), name='invoice-list'),
    path('invoices/<int:pk>/', InvoiceDetailView.as_view(), name='invoice-detail'),
    path('invoices/<int:pk>/status/', InvoiceStatusView.as_view(), name='invoice-status'),
    path('payments/', PaymentListView.as_view(), name='payment-list'),
    path('payments/<int:pk>/', PaymentDetailView.as_view(), name='payment-detail'),

    # Deliveries
    path('deliveries/', DeliveryListView.as_view(), name='delivery-list'),
    path('deliveries/<int:pk>/', DeliveryDetailView.as_view(), name='delivery-detail'),
    path('deliveries/<int:pk>/status/', DeliveryStatusView.as_view(), name='delivery-status'),
    path('delivery-notes/', DeliveryNoteListView.as_view(), name='delivery-note-list'),
    path('delivery-notes/<int:pk>/', DeliveryNoteDetailView.as_view(), name='delivery-note-detail'),
    path('delivery-notes/<int:pk>/status/', DeliveryNoteStatusView.as_view(), name='delivery-note-status'),

    # Stock opname, management stock, production
    path('stock/opnames/', StockOpnameListView.as_view(), name='stock-opname-list'),
    path('stock/opnames/reconciled/', ReconciledOpnameListView.as_view(), name='stock-opname-reconciled'),
    path('stock/opnames/<int:pk>/', StockOpnameDetailView.as_view(), name='stock-opname-detail'),
    path('stock/management/', ManagementStockListView.as_view(), name='management-stock-list'),
    path('stock/management/<int:pk>/', ManagementStockDetailView.as_view(), name='management-stock-detail'),
    path('production/', ProductionLogListView.as_view(), name='production-log-list'),
    path('production/<int:pk>/', ProductionLogDetailView.as_view(), name='production-log-detail'),

    # Stock movement exports (CSV/XLSX)
    path('exports/movements/csv/', movements_csv_export, name='movements-csv-export'),
    path('exports/movements/xlsx/', movements_xlsx_export, name='movements-xlsx-export'),
]
