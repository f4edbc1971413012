from sqlalchemy import Column, Integer, String, DateTime, Numeric
from sqlalchemy.orm import relationship
from ..database import Base, utcnow


class Cart(Base):
    __tablename__ = "carts"

    id = Column(String, primary_key=True, index=True)  # UUID
    user_id = Column(Integer, nullable=True, unique=True, index=True)  # корзина пользователя
    token = Column(String(64), nullable=True, unique=True, index=True)  # гостевая корзина

    # Производные значения, пересчитываются целиком после каждой мутации
    item_count = Column(Integer, nullable=False, default=0)
    total_amount = Column(Numeric(10, 2), nullable=False, default=0)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Связь с позициями корзины
    items = relationship("CartItem", back_populates="cart", cascade="all, delete-orphan")
