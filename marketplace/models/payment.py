from sqlalchemy import Column, String, DateTime, Numeric, ForeignKey, Index
from enum import Enum as PyEnum
from ..database import Base, utcnow
from .order import OrderStatus


class PaymentStatus(str, PyEnum):
    PENDING = "pending"  # Ожидает оплаты
    PAID = "paid"  # Оплачено
    FAILED = "failed"  # Ошибка оплаты
    REFUNDED = "refunded"  # Возврат


# Статус вебхука -> статус заказа. Неизвестные статусы заказ не меняют.
WEBHOOK_ORDER_STATUS = {
    PaymentStatus.PAID.value: OrderStatus.PAID,
    PaymentStatus.FAILED.value: OrderStatus.PAYMENT_FAILED,
    PaymentStatus.REFUNDED.value: OrderStatus.REFUNDED,
}


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        Index("ix_payments_provider_key", "provider", "provider_payment_id"),
    )

    id = Column(String, primary_key=True, index=True)  # UUID
    order_id = Column(String, ForeignKey("orders.id"), nullable=False, index=True)

    # Информация об оплате
    provider = Column(String(50), nullable=False)
    provider_payment_id = Column(String(255), nullable=True)  # Внешний ID от платежной системы
    amount = Column(Numeric(10, 2), nullable=False)

    # Строка, а не Enum: неизвестный статус провайдера сохраняется как есть
    status = Column(String(32), default=PaymentStatus.PENDING.value, nullable=False)

    # Дочерний платеж ссылается на master платеж, который его породил
    linked_payment_id = Column(String, ForeignKey("payments.id"), nullable=True, index=True)

    # Временные метки
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
