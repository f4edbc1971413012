from .inventory_service import InventoryService
from .order_service import OrderService, merge_line_items
from .payment_service import PaymentService
from .cart_service import CartService

__all__ = ["InventoryService", "OrderService", "merge_line_items", "PaymentService", "CartService"]
