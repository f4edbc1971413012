import uuid
from decimal import Decimal
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy import select, delete
import logging

from ..database import transaction, utcnow
from ..errors import MarketplaceError, NotFound, Forbidden, InvalidItems, TransientStoreError
from ..models.cart import Cart
from ..models.cart_item import CartItem
from ..models.product import Product
from ..schemas.cart import CartItem as CartItemSchema, CartSummary
from ..schemas.order import CheckoutResponse
from ..utils.money import to_money
from ..utils.retry import store_retry
from .order_service import OrderService, merge_line_items

logger = logging.getLogger(__name__)


class CartService:
    """
    Корзина покупателя.

    item_count и total_amount - производные значения: после каждой мутации
    они пересчитываются целиком по текущему набору позиций.
    Каждая мутация сначала блокирует строку корзины, поэтому
    параллельные изменения одной корзины выполняются по очереди.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_cart(self, user_id: Optional[int] = None, token: Optional[str] = None) -> CartSummary:
        """
        Корзина пользователя или гостевая по токену.
        Чтение ничего не создает: у пользователя без корзины - пустая сводка.
        """
        cart = await self._find_cart(user_id=user_id, token=token)
        if cart is None:
            if user_id is None:
                raise NotFound("Cart not found")
            return CartSummary(
                cart_id=None,
                user_id=user_id,
                item_count=0,
                total_amount=Decimal("0.00"),
                items=[]
            )
        return await self.summary(cart)

    @store_retry()
    async def add_item(
            self,
            product_id: int,
            quantity: int,
            user_id: Optional[int] = None,
            token: Optional[str] = None
    ) -> CartSummary:
        """Добавить товар в корзину, цена фиксируется на момент добавления"""
        if quantity <= 0:
            raise InvalidItems("Quantity must be positive", {"quantity": quantity})

        try:
            async with transaction(self.db):
                cart = await self._get_or_create(user_id=user_id, token=token, for_update=True)

                product = (await self.db.execute(
                    select(Product).where(Product.id == product_id)
                )).scalar_one_or_none()
                if product is None:
                    raise NotFound("Product not found", {"product_id": product_id})

                existing_item = (await self.db.execute(
                    select(CartItem).where(CartItem.cart_id == cart.id, CartItem.product_id == product_id)
                )).scalar_one_or_none()

                if existing_item:
                    existing_item.quantity += quantity
                    existing_item.price_at_add = to_money(product.price)
                    action = "updated"
                else:
                    self.db.add(CartItem(
                        cart_id=cart.id,
                        product_id=product.id,
                        vendor_id=product.vendor_id,
                        product_name=product.name,
                        quantity=quantity,
                        price_at_add=to_money(product.price)
                    ))
                    action = "added"

                await self.recalculate(cart)
        except MarketplaceError as e:
            logger.warning(f"⚠️ Add to cart rejected: {e.message}")
            raise

        logger.info(f"🛒 Product {product_id} {action} in cart {cart.id}")
        return await self.summary(cart)

    async def update_item(
            self,
            item_id: int,
            quantity: int,
            user_id: Optional[int] = None,
            token: Optional[str] = None
    ) -> CartSummary:
        """Обновить количество; quantity <= 0 удаляет позицию"""
        async with transaction(self.db):
            cart = await self._require_cart(user_id, token, for_update=True)
            item = await self._require_item(cart, item_id)
            if quantity <= 0:
                await self.db.execute(delete(CartItem).where(CartItem.id == item.id))
                logger.info(f"🗑️ Item {item_id} removed from cart {cart.id} (quantity {quantity})")
            else:
                item.quantity = quantity
            await self.recalculate(cart)

        return await self.summary(cart)

    async def remove_item(self, item_id: int, user_id: Optional[int] = None, token: Optional[str] = None) -> CartSummary:
        """Удалить товар из корзины"""
        async with transaction(self.db):
            cart = await self._require_cart(user_id, token, for_update=True)
            item = await self._require_item(cart, item_id)
            await self.db.execute(delete(CartItem).where(CartItem.id == item.id))
            await self.recalculate(cart)

        logger.info(f"🗑️ Item {item_id} removed from cart {cart.id}")
        return await self.summary(cart)

    async def clear_cart(self, user_id: Optional[int] = None, token: Optional[str] = None) -> CartSummary:
        """Очистить корзину"""
        async with transaction(self.db):
            cart = await self._require_cart(user_id, token, for_update=True)
            await self.db.execute(delete(CartItem).where(CartItem.cart_id == cart.id))
            await self.recalculate(cart)

        logger.info(f"🧹 Cart {cart.id} cleared")
        return await self.summary(cart)

    @store_retry()
    async def merge_guest_cart(self, token: str, user_id: int) -> CartSummary:
        """
        Слияние гостевой корзины в корзину пользователя после входа.
        Либо все позиции перенесены и гостевая корзина удалена, либо ничего не изменилось.
        """
        try:
            async with transaction(self.db):
                guest = await self._find_cart(token=token, for_update=True)
                if guest is None:
                    raise NotFound("Guest cart not found", {"cart_token": token})

                user_cart = await self._get_or_create(user_id=user_id, for_update=True)
                if guest.id == user_cart.id:
                    return await self.summary(user_cart)

                user_items = {item.product_id: item for item in await self.get_items(user_cart.id)}
                guest_items = await self.get_items(guest.id)

                for item in guest_items:
                    if item.product_id in user_items:
                        user_items[item.product_id].quantity += item.quantity
                    else:
                        self.db.add(CartItem(
                            cart_id=user_cart.id,
                            product_id=item.product_id,
                            vendor_id=item.vendor_id,
                            product_name=item.product_name,
                            quantity=item.quantity,
                            price_at_add=item.price_at_add
                        ))

                await self.db.execute(delete(CartItem).where(CartItem.cart_id == guest.id))
                await self.db.execute(delete(Cart).where(Cart.id == guest.id))

                await self.recalculate(user_cart)
        except MarketplaceError as e:
            logger.warning(f"⚠️ Cart merge rejected for user {user_id}: {e.message}")
            raise
        except Exception as e:
            logger.error(f"❌ Error merging cart {token} into user {user_id}: {e}")
            raise

        logger.info(f"🔀 Guest cart merged into cart {user_cart.id} ({len(guest_items)} item(s))")
        return await self.summary(user_cart)

    @store_retry()
    async def checkout(self, buyer_id: int, shipping_address: Optional[str] = None) -> CheckoutResponse:
        """
        Оформление заказа из корзины пользователя.
        Цены пересчитываются по каталогу, корзина удаляется той же транзакцией.
        """
        order_service = OrderService(self.db)

        try:
            async with transaction(self.db):
                cart = await self._find_cart(user_id=buyer_id, for_update=True)
                if cart is None:
                    raise NotFound("Cart not found", {"user_id": buyer_id})

                cart_id = cart.id
                items = await self.get_items(cart.id)
                if not items:
                    raise InvalidItems("Cart is empty", {"cart_id": cart.id})

                lines = merge_line_items([(item.product_id, item.quantity) for item in items])
                master, children = await order_service.build_hierarchy(buyer_id, lines, shipping_address)

                await self.db.execute(delete(CartItem).where(CartItem.cart_id == cart_id))
                await self.db.execute(delete(Cart).where(Cart.id == cart_id))
        except MarketplaceError as e:
            logger.warning(f"⚠️ Cart checkout rejected for buyer {buyer_id}: {e.message}")
            raise
        except Exception as e:
            logger.error(f"❌ Error during cart checkout for buyer {buyer_id}: {e}")
            raise

        result = order_service.checkout_result(master, children)
        logger.info(f"🛒 Cart {cart_id} checked out into master order {master.id}")

        await order_service.publish_order_created_event(result)
        return result

    async def recalculate(self, cart: Cart) -> List[CartItem]:
        """Полный пересчет item_count / total_amount по текущим позициям"""
        items = await self.get_items(cart.id)

        cart.item_count = sum(item.quantity for item in items)
        cart.total_amount = to_money(
            sum((to_money(item.price_at_add) * item.quantity for item in items), Decimal("0"))
        )
        cart.updated_at = utcnow()

        await self.db.flush()
        return items

    async def get_items(self, cart_id: str) -> List[CartItem]:
        result = await self.db.execute(
            select(CartItem).where(CartItem.cart_id == cart_id).order_by(CartItem.id)
        )
        return list(result.scalars().all())

    async def summary(self, cart: Cart) -> CartSummary:
        """Получить корзину с итогами"""
        items = await self.get_items(cart.id)
        return CartSummary(
            cart_id=cart.id,
            user_id=cart.user_id,
            cart_token=cart.token,
            item_count=cart.item_count,
            total_amount=to_money(cart.total_amount),
            items=[CartItemSchema.model_validate(item) for item in items],
            updated_at=cart.updated_at
        )

    async def _find_cart(
            self,
            user_id: Optional[int] = None,
            token: Optional[str] = None,
            for_update: bool = False
    ) -> Optional[Cart]:
        if user_id is not None:
            query = select(Cart).where(Cart.user_id == user_id)
        elif token:
            query = select(Cart).where(Cart.token == token)
        else:
            return None

        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        return (await self.db.execute(query)).scalar_one_or_none()

    async def _get_or_create(
            self,
            user_id: Optional[int] = None,
            token: Optional[str] = None,
            for_update: bool = False
    ) -> Cart:
        """Получить или создать корзину; без владельца создается гостевая с новым токеном"""
        cart = await self._find_cart(user_id=user_id, token=token, for_update=for_update)
        if cart is not None:
            return cart

        if user_id is None and not token:
            token = uuid.uuid4().hex

        cart = Cart(
            id=str(uuid.uuid4()),
            user_id=user_id,
            token=token if user_id is None else None,
            item_count=0,
            total_amount=Decimal("0.00")
        )
        self.db.add(cart)
        try:
            await self.db.flush()
        except IntegrityError as e:
            # Параллельный запрос успел создать корзину того же владельца:
            # транзакция откатывается, повтор найдет уже существующую строку
            logger.warning(f"⚠️ Cart for {user_id or token} created concurrently, retrying")
            raise TransientStoreError("Cart was created concurrently", {"user_id": user_id}) from e

        logger.info(f"🆕 Cart {cart.id} created ({'user ' + str(user_id) if user_id is not None else 'guest'})")
        return cart

    async def _require_cart(
            self,
            user_id: Optional[int],
            token: Optional[str],
            for_update: bool = False
    ) -> Cart:
        cart = await self._find_cart(user_id=user_id, token=token, for_update=for_update)
        if cart is None:
            raise NotFound("Cart not found")
        return cart

    async def _require_item(self, cart: Cart, item_id: int) -> CartItem:
        item = (await self.db.execute(select(CartItem).where(CartItem.id == item_id))).scalar_one_or_none()
        if item is None:
            raise NotFound("Cart item not found", {"item_id": item_id})
        if item.cart_id != cart.id:
            raise Forbidden("Not your cart item", {"item_id": item_id})
        return item
