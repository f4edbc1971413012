from sqlalchemy import Column, Integer, String, DateTime, Numeric, CheckConstraint
from ..database import Base, utcnow


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_products_quantity_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    vendor_id = Column(Integer, nullable=True, index=True)  # NULL - ошибка целостности при checkout

    name = Column(String(255), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)  # Текущая цена в каталоге

    # Остаток на складе, меняется только через InventoryService
    quantity = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
