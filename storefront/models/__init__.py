"""Tables of the cart-to-order engine."""

from .base import Base, utcnow
from .cart import Cart, CartLine, attributes_key
from .order import Order, OrderAddress, OrderLine, OrderStatusEvent
from .product import Product

__all__ = [
    "Base",
    "utcnow",
    "Cart",
    "CartLine",
    "attributes_key",
    "Order",
    "OrderAddress",
    "OrderLine",
    "OrderStatusEvent",
    "Product",
]
