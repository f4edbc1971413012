from sqlalchemy import Column, String, DateTime, Enum, Numeric, Text, Integer, ForeignKey
from sqlalchemy.orm import relationship
from enum import Enum as PyEnum
from ..database import Base, utcnow


class OrderStatus(str, PyEnum):
    PENDING = "pending"  # Ожидает оплаты
    PAID = "paid"  # Оплачен
    PAYMENT_FAILED = "payment_failed"  # Ошибка оплаты
    REFUNDED = "refunded"  # Возвращен


# Разрешенные переходы. Повторное применение текущего статуса - no-op.
ORDER_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PAID, OrderStatus.PAYMENT_FAILED, OrderStatus.REFUNDED},
    OrderStatus.PAID: {OrderStatus.REFUNDED},
    OrderStatus.PAYMENT_FAILED: {OrderStatus.PAID},
    OrderStatus.REFUNDED: set(),
}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """Проверяет переход по таблице состояний"""
    return current == target or target in ORDER_TRANSITIONS[current]


class Order(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True, index=True)  # UUID
    buyer_id = Column(Integer, nullable=False, index=True)

    # Иерархия: parent_order_id IS NULL - master заказ, иначе дочерний заказ продавца
    parent_order_id = Column(String, ForeignKey("orders.id"), nullable=True, index=True)
    vendor_id = Column(Integer, nullable=True, index=True)

    # Статус заказа
    status = Column(Enum(OrderStatus), default=OrderStatus.PENDING, nullable=False)

    total_amount = Column(Numeric(10, 2), nullable=False)

    # Информация о доставке (снимок на момент заказа)
    shipping_address = Column(Text, nullable=True)

    # Временные метки
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Связи
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")

    @property
    def is_master(self) -> bool:
        return self.parent_order_id is None
