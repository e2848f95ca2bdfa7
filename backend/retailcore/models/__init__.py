from .tenancy import Tenant, Location
from .catalog import Product, Customer
from .inventory import InventoryRecord, StockMovement
from .orders import Order, OrderLine, PaymentEvent, UnreconciledCapture
from .auth import User, UserLocation, SessionToken
from .security import SecurityEvent

__all__ = [
    'Tenant', 'Location',
    'Product', 'Customer',
    'InventoryRecord', 'StockMovement',
    'Order', 'OrderLine', 'PaymentEvent', 'UnreconciledCapture',
    'User', 'UserLocation', 'SessionToken',
    'SecurityEvent',
]
