from .catalog import Product
from .inventory import InventoryItem
from .requests import ProductRequest
from .ledger import CompanyAccount, LedgerTransaction
from .sagas import SagaLog

__all__ = [
    'Product',
    'InventoryItem',
    'ProductRequest',
    'CompanyAccount', 'LedgerTransaction',
    'SagaLog',
]
