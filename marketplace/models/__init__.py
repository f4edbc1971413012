from .product import Product
from .order import Order, OrderStatus, ORDER_TRANSITIONS, can_transition
from .order_item import OrderItem
from .payment import Payment, PaymentStatus, WEBHOOK_ORDER_STATUS
from .cart import Cart
from .cart_item import CartItem

__all__ = [
    "Product",
    "Order",
    "OrderStatus",
    "ORDER_TRANSITIONS",
    "can_transition",
    "OrderItem",
    "Payment",
    "PaymentStatus",
    "WEBHOOK_ORDER_STATUS",
    "Cart",
    "CartItem",
]
