"""
Services package for ledger business logic.
"""
from .stock_ledger import StockChange, StockLedger, StockMovementService
from .invoice_service import InvoiceBalance, InvoiceService
from .payment_service import PaymentService
from .delivery_service import DeliveryService
from .stock_opname_service import StockOpnameService
from .management_stock_service import ManagementStockService
from .production_service import ProductionService
from .export_service import MovementExportService

__all__ = [
    'StockChange',
    'StockLedger',
    'StockMovementService',
    'InvoiceBalance',
    'InvoiceService',
    'PaymentService',
    'DeliveryService',
    'StockOpnameService',
    'ManagementStockService',
    'ProductionService',
    'MovementExportService',
]
