from .auth import User
from .customers import Customer
from .catalog import Product, Supply, PriceOffer, PriceRoleAccess
from .inventory import InventoryMovement, SupplyMovement
from .sales import Sale, SaleItem
from .sync import SyncQueueEntry
from .production import ProductionRecord, Purchase, PurchaseItem

__all__ = [
    'User',
    'Customer',
    'Product', 'Supply', 'PriceOffer', 'PriceRoleAccess',
    'InventoryMovement', 'SupplyMovement',
    'Sale', 'SaleItem',
    'SyncQueueEntry',
    'ProductionRecord', 'Purchase', 'PurchaseItem',
]
