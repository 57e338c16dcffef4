from .inventory import InventoryRecord, InventoryTransaction
from .orders import Order, OrderItem, OrderStatusHistory, OrderSequence

__all__ = [
    'InventoryRecord', 'InventoryTransaction',
    'Order', 'OrderItem', 'OrderStatusHistory', 'OrderSequence',
]
