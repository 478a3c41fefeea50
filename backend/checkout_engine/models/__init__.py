from .catalog import Product, CartItem
from .orders import Order, OrderItem, OrderEvent, IdempotencyKey
from .auth import RolePermission

__all__ = [
    'Product', 'CartItem',
    'Order', 'OrderItem', 'OrderEvent', 'IdempotencyKey',
    'RolePermission',
]
