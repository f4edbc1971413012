from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime
from sqlalchemy.orm import relationship
from ..database import Base, utcnow


class CartItem(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True, index=True)
    cart_id = Column(String, ForeignKey("carts.id"), nullable=False, index=True)
    product_id = Column(Integer, nullable=False, index=True)
    vendor_id = Column(Integer, nullable=True)
    product_name = Column(String(255), nullable=True)
    quantity = Column(Integer, nullable=False)
    price_at_add = Column(Numeric(10, 2), nullable=False)  # Цена на момент добавления

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Связь с корзиной
    cart = relationship("Cart", back_populates="items")
