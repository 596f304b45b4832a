from .catalog import Product, Client, Supplier, ClientProductPrice, ClientProductPriceHistory, ProductCostHistory
from .inventory import InventoryMovement
from .sales import Sale, SaleItem, SalePayment, SaleReturn, SaleReturnItem, SaleRefund
from .purchases import Purchase, PurchaseItem, PurchasePayment
from .cash import CashShift, CashTransaction
from .documents import DocumentSequence

__all__ = [
    'Product', 'Client', 'Supplier',
    'ClientProductPrice', 'ClientProductPriceHistory', 'ProductCostHistory',
    'InventoryMovement',
    'Sale', 'SaleItem', 'SalePayment', 'SaleReturn', 'SaleReturnItem', 'SaleRefund',
    'Purchase', 'PurchaseItem', 'PurchasePayment',
    'CashShift', 'CashTransaction',
    'DocumentSequence',
]
