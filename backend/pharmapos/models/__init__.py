from .tenancy import Tenant, Store, StoreUser, TenantLicense
from .auth import User, SessionToken
from .catalog import Product, Discount, Customer
from .inventory import InventoryLot, InventoryMovement
from .documents import (
    StockTransfer, StockTransferItem, StockReservation, StockReservationItem,
    DocumentSequence, AuditEvent,
)
from .sales import Sale, SaleItem, Payment
from .cash import CashSession, CashMovement
from .notifications import StoreNotification

__all__ = [
    'Tenant', 'Store', 'StoreUser', 'TenantLicense',
    'User', 'SessionToken',
    'Product', 'Discount', 'Customer',
    'InventoryLot', 'InventoryMovement',
    'StockTransfer', 'StockTransferItem', 'StockReservation', 'StockReservationItem',
    'DocumentSequence', 'AuditEvent',
    'Sale', 'SaleItem', 'Payment',
    'CashSession', 'CashMovement',
    'StoreNotification',
]
