from .catalog import Product, Supplier
from .inventory import StockTransaction
from .customers import Customer, LoyaltyTransaction, Coupon
from .sales import Sale, SaleLine
from .purchases import Purchase, PurchaseLine
from .documents import DocumentSequence

__all__ = [
    'Product', 'Supplier',
    'StockTransaction',
    'Customer', 'LoyaltyTransaction', 'Coupon',
    'Sale', 'SaleLine',
    'Purchase', 'PurchaseLine',
    'DocumentSequence',
]
