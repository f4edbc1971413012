from .order import (
    OrderLineCreate,
    OrderCreate,
    OrderItemResponse,
    OrderResponse,
    ChildOrderSummary,
    CheckoutResponse,
    ChildOrderDetail,
    OrderDetailResponse,
    OrderListResponse,
)
from .payment import (
    PaymentCreate,
    PaymentWebhook,
    PaymentResponse,
    PaymentResult,
    WebhookResult,
    AllocationSummary,
    AllocationReport,
)
from .cart import CartItem, CartItemCreate, CartItemUpdate, CartMerge, CartCheckout, CartSummary

__all__ = [
    "OrderLineCreate",
    "OrderCreate",
    "OrderItemResponse",
    "OrderResponse",
    "ChildOrderSummary",
    "CheckoutResponse",
    "ChildOrderDetail",
    "OrderDetailResponse",
    "OrderListResponse",
    "PaymentCreate",
    "PaymentWebhook",
    "PaymentResponse",
    "PaymentResult",
    "WebhookResult",
    "AllocationSummary",
    "AllocationReport",
    "CartItem",
    "CartItemCreate",
    "CartItemUpdate",
    "CartMerge",
    "CartCheckout",
    "CartSummary",
]
