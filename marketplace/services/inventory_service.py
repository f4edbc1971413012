from typing import Dict, Iterable
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
import logging

from ..models.product import Product
from ..errors import NotFound, InsufficientStock

logger = logging.getLogger(__name__)


class InventoryService:
    """
    Складской учет.

    Все методы работают внутри транзакции вызывающего кода:
    блокировки строк держатся до commit/rollback внешней транзакции,
    сам сервис ничего не коммитит.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def lock_products(self, product_ids: Iterable[int]) -> Dict[int, Product]:
        """
        Блокирует строки товаров одним запросом (SELECT ... FOR UPDATE).
        Порядок по id фиксирован, чтобы параллельные checkout не ждали друг друга по кругу.
        """
        ids = sorted(set(product_ids))
        if not ids:
            return {}

        query = (
            select(Product)
            .where(Product.id.in_(ids))
            .order_by(Product.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        return {product.id: product for product in result.scalars().all()}

    async def reserve_stock(self, product_id: int, quantity: int) -> Product:
        """Атомарная проверка и списание остатка под блокировкой строки"""
        query = (
            select(Product)
            .where(Product.id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        product = result.scalar_one_or_none()

        if product is None:
            raise NotFound(f"Product {product_id} not found", {"product_id": product_id})

        available = product.quantity
        if quantity > available:
            logger.warning(
                f"⚠️ Stock reservation rejected for product {product_id}: "
                f"requested {quantity}, available {available}"
            )
            raise InsufficientStock(product_id, quantity, available)

        product.quantity = available - quantity
        await self.db.flush()

        logger.info(f"📦 Reserved {quantity} of product {product_id}, {product.quantity} left")
        return product

    async def get_stock(self, product_id: int) -> int:
        """Текущий остаток товара"""
        result = await self.db.execute(select(Product.quantity).where(Product.id == product_id))
        quantity = result.scalar_one_or_none()
        if quantity is None:
            raise NotFound(f"Product {product_id} not found", {"product_id": product_id})
        return quantity
