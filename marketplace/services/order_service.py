import uuid
from collections import OrderedDict
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from ..database import transaction
from ..errors import MarketplaceError, InvalidItems, InsufficientStock, OrphanProduct, NotFound, Forbidden
from ..models.order import Order, OrderStatus
from ..models.order_item import OrderItem
from ..schemas.order import (
    CheckoutResponse,
    ChildOrderSummary,
    ChildOrderDetail,
    OrderDetailResponse,
    OrderItemResponse,
    OrderResponse,
)
from ..events.producer import event_producer
from ..utils.money import to_money
from ..utils.retry import store_retry
from .inventory_service import InventoryService
import logging

logger = logging.getLogger(__name__)


def merge_line_items(items: Iterable[Tuple[int, int]]) -> List[Tuple[int, int]]:
    """
    Проверяет позиции и схлопывает повторяющиеся product_id суммированием количества.
    Вызывается до открытия транзакции.
    """
    merged: "OrderedDict[int, int]" = OrderedDict()
    for product_id, quantity in items:
        if not isinstance(product_id, int) or not isinstance(quantity, int) or product_id <= 0 or quantity <= 0:
            raise InvalidItems(
                "Invalid product_id or quantity",
                {"product_id": product_id, "quantity": quantity},
            )
        merged[product_id] = merged.get(product_id, 0) + quantity

    if not merged:
        raise InvalidItems("Order must contain at least one item")

    return list(merged.items())


class OrderService:
    """Сервис для работы с иерархией заказов (master + дочерние заказы продавцов)"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.inventory = InventoryService(db)

    @store_retry()
    async def create_order_hierarchy(
            self,
            buyer_id: int,
            items: Iterable[Tuple[int, int]],
            shipping_address: Optional[str] = None
    ) -> CheckoutResponse:
        """Создает master заказ и дочерние заказы по продавцам одной транзакцией"""
        lines = merge_line_items(items)

        try:
            async with transaction(self.db):
                master, children = await self.build_hierarchy(buyer_id, lines, shipping_address)
        except MarketplaceError as e:
            logger.warning(f"⚠️ Checkout rejected for buyer {buyer_id}: {e.message}")
            raise
        except Exception as e:
            logger.error(f"❌ Error creating order hierarchy for buyer {buyer_id}: {e}")
            raise

        result = self.checkout_result(master, children)
        logger.info(
            f"✅ Master order {master.id} created for buyer {buyer_id} "
            f"with {len(children)} vendor order(s), total {master.total_amount}"
        )

        await self.publish_order_created_event(result)
        return result

    async def build_hierarchy(
            self,
            buyer_id: int,
            lines: List[Tuple[int, int]],
            shipping_address: Optional[str] = None
    ) -> Tuple[Order, List[Order]]:
        """
        Строит иерархию внутри уже открытой транзакции.

        Любое исключение отсюда должно приводить к rollback всей транзакции:
        частично созданных заказов и списаний не остается.
        """
        products = await self.inventory.lock_products(pid for pid, _ in lines)

        missing = [pid for pid, _ in lines if pid not in products]
        if missing:
            raise InvalidItems("Products not found", {"missing_product_ids": missing})

        for product_id, quantity in lines:
            available = products[product_id].quantity
            if quantity > available:
                raise InsufficientStock(product_id, quantity, available)

        # Группируем позиции по продавцу, цена берется из каталога, а не от клиента
        by_vendor: Dict[int, List[Tuple[int, int, Decimal]]] = {}
        for product_id, quantity in lines:
            product = products[product_id]
            if product.vendor_id is None:
                raise OrphanProduct(product_id)
            by_vendor.setdefault(product.vendor_id, []).append(
                (product_id, quantity, to_money(product.price))
            )

        subtotals = {
            vendor_id: to_money(sum((price * qty for _, qty, price in vendor_lines), Decimal("0")))
            for vendor_id, vendor_lines in by_vendor.items()
        }

        master = Order(
            id=str(uuid.uuid4()),
            buyer_id=buyer_id,
            parent_order_id=None,
            vendor_id=None,
            status=OrderStatus.PENDING,
            total_amount=to_money(sum(subtotals.values(), Decimal("0"))),
            shipping_address=shipping_address
        )
        self.db.add(master)
        await self.db.flush()

        children = []
        for vendor_id in sorted(by_vendor):
            child = Order(
                id=str(uuid.uuid4()),
                buyer_id=buyer_id,
                parent_order_id=master.id,
                vendor_id=vendor_id,
                status=OrderStatus.PENDING,
                total_amount=subtotals[vendor_id],
                shipping_address=shipping_address
            )
            self.db.add(child)
            await self.db.flush()

            for product_id, quantity, unit_price in by_vendor[vendor_id]:
                self.db.add(OrderItem(
                    order_id=child.id,
                    product_id=product_id,
                    product_name=products[product_id].name,
                    quantity=quantity,
                    unit_price=unit_price,
                    total_price=to_money(unit_price * quantity)
                ))
                await self.inventory.reserve_stock(product_id, quantity)

            children.append(child)

        await self.db.flush()
        return master, children

    @staticmethod
    def checkout_result(master: Order, children: List[Order]) -> CheckoutResponse:
        return CheckoutResponse(
            master_order=OrderResponse.model_validate(master),
            child_orders=[
                ChildOrderSummary(order_id=c.id, vendor_id=c.vendor_id, total=c.total_amount)
                for c in children
            ]
        )

    async def get_order(self, order_id: str) -> Optional[Order]:
        """Получает заказ по ID"""
        result = await self.db.execute(select(Order).where(Order.id == order_id))
        return result.scalar_one_or_none()

    async def get_children(self, master_id: str) -> List[Order]:
        query = select(Order).where(Order.parent_order_id == master_id).order_by(Order.vendor_id)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_items(self, order_ids: List[str]) -> Dict[str, List[OrderItem]]:
        """Позиции для набора заказов, сгруппированные по order_id"""
        grouped: Dict[str, List[OrderItem]] = {order_id: [] for order_id in order_ids}
        if not order_ids:
            return grouped
        query = select(OrderItem).where(OrderItem.order_id.in_(order_ids)).order_by(OrderItem.id)
        result = await self.db.execute(query)
        for item in result.scalars().all():
            grouped[item.order_id].append(item)
        return grouped

    async def get_order_detail(self, order_id: str, user_id: int, role: str) -> OrderDetailResponse:
        """
        Детали заказа с проверкой доступа:
        покупатель видит свои заказы, продавец - иерархии со своим дочерним заказом,
        администратор - все.
        """
        order = await self.get_order(order_id)
        if order is None:
            raise NotFound("Order not found", {"order_id": order_id})

        if order.is_master:
            children = await self.get_children(order.id)
            self._check_access(order, children, user_id, role)

            items = await self.get_items([c.id for c in children])
            return OrderDetailResponse(
                order=OrderResponse.model_validate(order),
                children=[
                    ChildOrderDetail(
                        **OrderResponse.model_validate(c).model_dump(),
                        items=[OrderItemResponse.model_validate(i) for i in items[c.id]]
                    )
                    for c in children
                ]
            )

        self._check_access(order, [order], user_id, role)
        items = await self.get_items([order.id])
        parent = await self.get_order(order.parent_order_id)
        return OrderDetailResponse(
            order=OrderResponse.model_validate(order),
            items=[OrderItemResponse.model_validate(i) for i in items[order.id]],
            parent=OrderResponse.model_validate(parent) if parent else None
        )

    @staticmethod
    def _check_access(order: Order, vendor_orders: List[Order], user_id: int, role: str):
        if role == "admin":
            return
        if role == "customer" and order.buyer_id == user_id:
            return
        if role == "vendor" and any(o.vendor_id == user_id for o in vendor_orders):
            return
        raise Forbidden("Not your order", {"order_id": order.id})

    async def get_buyer_orders(self, buyer_id: int, skip: int = 0, limit: int = 20) -> Tuple[List[Order], int]:
        """Master заказы покупателя с пагинацией"""
        conditions = (Order.buyer_id == buyer_id, Order.parent_order_id.is_(None))
        return await self._page(conditions, skip, limit)

    async def get_vendor_orders(self, vendor_id: int, skip: int = 0, limit: int = 20) -> Tuple[List[Order], int]:
        """Дочерние заказы продавца с пагинацией"""
        conditions = (Order.vendor_id == vendor_id, Order.parent_order_id.is_not(None))
        return await self._page(conditions, skip, limit)

    async def _page(self, conditions, skip: int, limit: int) -> Tuple[List[Order], int]:
        total = (await self.db.execute(select(func.count(Order.id)).where(*conditions))).scalar() or 0

        query = (
            select(Order)
            .where(*conditions)
            .order_by(Order.created_at.desc(), Order.id)
            .offset(skip)
            .limit(limit)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def publish_order_created_event(self, result: CheckoutResponse):
        """Публикует событие создания заказа"""
        try:
            master = result.master_order
            payload = {
                "master_order_id": master.id,
                "buyer_id": master.buyer_id,
                "total_amount": str(master.total_amount),
                "status": master.status.value,
                "child_orders": [
                    {"order_id": c.order_id, "vendor_id": c.vendor_id, "total": str(c.total)}
                    for c in result.child_orders
                ],
                "created_at": master.created_at.isoformat()
            }

            await event_producer.publish_order_created(payload)

        except Exception as e:
            logger.error(f"❌ Failed to publish order_created event: {e}")
