from .tenancy import Clinic, DocumentSequence
from .inventory import Product, ProductBatch, StockMovement
from .billing import Invoice, InvoiceItem

__all__ = [
    'Clinic', 'DocumentSequence',
    'Product', 'ProductBatch', 'StockMovement',
    'Invoice', 'InvoiceItem',
]
