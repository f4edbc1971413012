from .orders import router as orders_router
from .payments import router as payments_router
from .cart import router as cart_router

__all__ = ["orders_router", "payments_router", "cart_router"]
