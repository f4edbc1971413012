from sqlalchemy import Column, String, Integer, Numeric, ForeignKey, DateTime
from sqlalchemy.orm import relationship
from ..database import Base, utcnow


class OrderItem(Base):
    """Строка чека - после создания не изменяется"""

    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String, ForeignKey("orders.id"), nullable=False, index=True)

    # Информация о товаре
    product_id = Column(Integer, nullable=False)
    product_name = Column(String(255), nullable=False)

    # Количество и цены
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)  # Цена за единицу на момент заказа
    total_price = Column(Numeric(10, 2), nullable=False)  # quantity * unit_price

    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Связи
    order = relationship("Order", back_populates="items")
