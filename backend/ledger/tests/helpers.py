"""
Shared fixtures for ledger tests.
"""

from decimal import Decimal

from ledger.choices import MovementType
from ledger.models import Customer, Invoice, Product
from ledger.services import InvoiceService, StockChange, StockLedger


def make_product(code, stock=0, price='100.00', min_stock=10, name=None):
    """Create a product and book its opening balance as an ADJUSTMENT_IN."""
    product = Product.objects.create(
        code=code,
        name=name or f'Product {code}',
        price=Decimal(price),
        min_stock=min_stock,
    )
    if stock:
        StockLedger.apply(
            product.id,
            StockChange.inbound(MovementType.ADJUSTMENT_IN, stock),
            reference='Opening balance',
            performed_by='tester',
        )
        product.refresh_from_db()
    return product


def make_customer(code='CUST-001', name='Acme Trading'):
    return Customer.objects.create(code=code, name=name, phone='+254700000000')


def make_invoice(lines, customer=None, status=Invoice.Status.SENT, **kwargs):
    """
    Create a product invoice.

    Args:
        lines: ``[(product, quantity, price)]``
    """
    return InvoiceService.create_invoice(
        items=[
            {'product_id': product.id, 'quantity': quantity, 'price': Decimal(price)}
            for product, quantity, price in lines
        ],
        customer_id=customer.id if customer else None,
        status=status,
        created_by='tester',
        **kwargs
    )
