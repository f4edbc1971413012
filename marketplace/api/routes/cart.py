from fastapi import APIRouter, Depends
from typing import Optional

from ...errors import NotFound
from ...schemas.cart import CartSummary, CartItemCreate, CartItemUpdate, CartMerge, CartCheckout
from ...schemas.order import CheckoutResponse
from ...services.cart_service import CartService
from ..dependencies import (
    CurrentUser,
    get_cart_service,
    get_cart_token,
    get_optional_user,
    require_role,
)

router = APIRouter(prefix="/cart", tags=["cart"])


def _owner(user: Optional[CurrentUser], token: Optional[str]) -> dict:
    """Владелец корзины: пользователь, иначе гостевой токен"""
    if user is not None:
        return {"user_id": user.id, "token": None}
    return {"user_id": None, "token": token}


@router.get("", response_model=CartSummary)
async def get_cart(
        user: Optional[CurrentUser] = Depends(get_optional_user),
        cart_token: Optional[str] = Depends(get_cart_token),
        cart_service: CartService = Depends(get_cart_service)
):
    """Получение текущей корзины"""
    if user is None and not cart_token:
        raise NotFound("No cart token and no auth provided")
    return await cart_service.get_cart(**_owner(user, cart_token))


@router.post("/items", response_model=CartSummary, status_code=201)
async def add_item_to_cart(
        item: CartItemCreate,
        user: Optional[CurrentUser] = Depends(get_optional_user),
        cart_token: Optional[str] = Depends(get_cart_token),
        cart_service: CartService = Depends(get_cart_service)
):
    """Добавление товара в корзину; без токена создается гостевая корзина"""
    return await cart_service.add_item(item.product_id, item.quantity, **_owner(user, cart_token))


@router.put("/items/{item_id}", response_model=CartSummary)
async def update_cart_item(
        item_id: int,
        item: CartItemUpdate,
        user: Optional[CurrentUser] = Depends(get_optional_user),
        cart_token: Optional[str] = Depends(get_cart_token),
        cart_service: CartService = Depends(get_cart_service)
):
    """Обновление количества товара в корзине"""
    return await cart_service.update_item(item_id, item.quantity, **_owner(user, cart_token))


@router.delete("/items/{item_id}", response_model=CartSummary)
async def remove_item_from_cart(
        item_id: int,
        user: Optional[CurrentUser] = Depends(get_optional_user),
        cart_token: Optional[str] = Depends(get_cart_token),
        cart_service: CartService = Depends(get_cart_service)
):
    """Удаление товара из корзины"""
    return await cart_service.remove_item(item_id, **_owner(user, cart_token))


@router.delete("", response_model=CartSummary)
async def clear_cart(
        user: Optional[CurrentUser] = Depends(get_optional_user),
        cart_token: Optional[str] = Depends(get_cart_token),
        cart_service: CartService = Depends(get_cart_service)
):
    """Очистка корзины"""
    return await cart_service.clear_cart(**_owner(user, cart_token))


@router.post("/merge", response_model=CartSummary)
async def merge_cart(
        merge: CartMerge,
        user: CurrentUser = Depends(require_role("customer")),
        cart_service: CartService = Depends(get_cart_service)
):
    """Слияние гостевой корзины в корзину пользователя"""
    return await cart_service.merge_guest_cart(merge.cart_token, user.id)


@router.post("/checkout", response_model=CheckoutResponse, status_code=201)
async def checkout_cart(
        checkout: Optional[CartCheckout] = None,
        user: CurrentUser = Depends(require_role("customer")),
        cart_service: CartService = Depends(get_cart_service)
):
    """Оформление заказа из корзины"""
    return await cart_service.checkout(
        buyer_id=user.id,
        shipping_address=checkout.shipping_address if checkout else None
    )
