"""
Таксономия ошибок ядра.

Каждая ошибка несет стабильный ``kind`` и HTTP статус, HTTP слой
сериализует ее в ``{"error": kind, "message": ..., "details": {...}}``.
"""
from typing import Any, Dict, Optional


class MarketplaceError(Exception):
    """Базовая ошибка домена"""

    kind = "unknown"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.kind,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(MarketplaceError):
    kind = "validation_error"
    status_code = 400


class InvalidItems(ValidationError):
    kind = "invalid_items"


class Unauthorized(MarketplaceError):
    kind = "unauthorized"
    status_code = 401


class Forbidden(MarketplaceError):
    kind = "forbidden"
    status_code = 403


class NotFound(MarketplaceError):
    kind = "not_found"
    status_code = 404


class Conflict(MarketplaceError):
    kind = "conflict"
    status_code = 409


class AlreadyPaid(Conflict):
    kind = "already_paid"

    def __init__(self, order_id: str):
        super().__init__("Order already paid", {"order_id": order_id})


class InvalidTransition(Conflict):
    kind = "invalid_transition"

    def __init__(self, order_id: str, current: str, target: str):
        super().__init__(
            f"Order {order_id} cannot move from {current} to {target}",
            {"order_id": order_id, "current": current, "target": target},
        )


class InsufficientStock(Conflict):
    kind = "insufficient_stock"

    def __init__(self, product_id: int, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for product {product_id}",
            {"product_id": product_id, "requested": requested, "available": available},
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class OrphanProduct(MarketplaceError):
    """Товар без продавца - нарушение целостности данных"""

    kind = "orphan_product"
    status_code = 422

    def __init__(self, product_id: int):
        super().__init__(f"Product {product_id} has no vendor", {"product_id": product_id})


class TransientStoreError(MarketplaceError):
    """Потеря соединения / таймаут блокировки - операцию можно повторить"""

    kind = "transient_store_error"
    status_code = 503
