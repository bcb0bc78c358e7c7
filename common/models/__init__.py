from .base import Base
from .order import Order
from .order_item import OrderItem

__all__ = ["Base", "Order", "OrderItem"]
