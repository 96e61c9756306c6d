from .auth import User, SessionToken
from .catalog import Category, Product, CostHistory
from .customers import Customer
from .inventory import InventoryMovement
from .sales import Sale, SaleLine, InvoiceSequence

__all__ = [
    'User', 'SessionToken',
    'Category', 'Product', 'CostHistory',
    'Customer',
    'InventoryMovement',
    'Sale', 'SaleLine', 'InvoiceSequence',
]
