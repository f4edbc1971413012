from fastapi import APIRouter, Depends, Query
import logging

from ...schemas.order import OrderCreate, CheckoutResponse, OrderDetailResponse, OrderListResponse, OrderResponse
from ...schemas.payment import PaymentCreate, PaymentResult
from ...services.order_service import OrderService, merge_line_items
from ...services.payment_service import PaymentService
from ...api.dependencies import (
    CurrentUser,
    get_current_user,
    get_order_service,
    get_payment_service,
    require_role,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=CheckoutResponse, status_code=201)
async def create_order(
        order_data: OrderCreate,
        user: CurrentUser = Depends(require_role("customer")),
        order_service: OrderService = Depends(get_order_service)
):
    """Оформить заказ: master заказ + дочерние заказы по продавцам"""
    # Проверка позиций до открытия транзакции
    lines = merge_line_items([(item.product_id, item.quantity) for item in order_data.items])
    return await order_service.create_order_hierarchy(
        buyer_id=user.id,
        items=lines,
        shipping_address=order_data.shipping_address
    )


@router.get("", response_model=OrderListResponse)
async def get_orders(
        page: int = Query(1, ge=1, description="Номер страницы"),
        per_page: int = Query(20, ge=1, le=200, description="Количество на странице"),
        user: CurrentUser = Depends(require_role("customer")),
        order_service: OrderService = Depends(get_order_service)
):
    """Master заказы текущего покупателя"""
    orders, total = await order_service.get_buyer_orders(user.id, skip=(page - 1) * per_page, limit=per_page)
    return _page(orders, total, page, per_page)


@router.get("/vendor", response_model=OrderListResponse)
async def get_vendor_orders(
        page: int = Query(1, ge=1, description="Номер страницы"),
        per_page: int = Query(20, ge=1, le=200, description="Количество на странице"),
        user: CurrentUser = Depends(require_role("vendor")),
        order_service: OrderService = Depends(get_order_service)
):
    """Дочерние заказы текущего продавца"""
    orders, total = await order_service.get_vendor_orders(user.id, skip=(page - 1) * per_page, limit=per_page)
    return _page(orders, total, page, per_page)


@router.get("/{order_id}", response_model=OrderDetailResponse)
async def get_order(
        order_id: str,
        user: CurrentUser = Depends(get_current_user),
        order_service: OrderService = Depends(get_order_service)
):
    """Получить заказ по ID (master - вместе с дочерними)"""
    return await order_service.get_order_detail(order_id, user.id, user.role)


@router.post("/{order_id}/pay", response_model=PaymentResult, response_model_exclude_none=True)
async def pay_order(
        order_id: str,
        payment_data: PaymentCreate,
        user: CurrentUser = Depends(get_current_user),
        payment_service: PaymentService = Depends(get_payment_service)
):
    """Оплатить заказ; оплата master заказа закрывает все дочерние"""
    return await payment_service.pay_order(
        order_id=order_id,
        provider=payment_data.provider,
        provider_payment_id=payment_data.provider_payment_id,
        amount=payment_data.amount,
        buyer_id=None if user.role == "admin" else user.id
    )


def _page(orders, total: int, page: int, per_page: int) -> OrderListResponse:
    return OrderListResponse(
        orders=[OrderResponse.model_validate(o) for o in orders],
        total=total,
        page=page,
        per_page=per_page,
        total_pages=(total + per_page - 1) // per_page
    )
