from .catalog import Product, ProductVariant
from .customers import Customer
from .invoices import Invoice, InvoiceLine, InvoicePayment, InvoiceStatusAudit
from .orders import OnlineOrder, OnlineOrderLine
from .drafts import DraftSession
from .ledger import StockMovement, LedgerEvent

__all__ = [
    'Product', 'ProductVariant',
    'Customer',
    'Invoice', 'InvoiceLine', 'InvoicePayment', 'InvoiceStatusAudit',
    'OnlineOrder', 'OnlineOrderLine',
    'DraftSession',
    'StockMovement', 'LedgerEvent',
]
