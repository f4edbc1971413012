from fastapi import APIRouter, Depends
from typing import List
import logging

from ...errors import NotFound
from ...schemas.payment import PaymentWebhook, WebhookResult, AllocationReport, PaymentResponse
from ...services.payment_service import PaymentService
from ...api.dependencies import (
    CurrentUser,
    get_current_user,
    get_payment_service,
    require_role,
    verify_webhook_secret,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/webhook", response_model=WebhookResult, dependencies=[Depends(verify_webhook_secret)])
async def payment_webhook(
        event: PaymentWebhook,
        payment_service: PaymentService = Depends(get_payment_service)
):
    """Вебхук платежного провайдера (доставка at-least-once)"""
    logger.info(f"📥 Webhook received: {event.provider}/{event.provider_payment_id} status={event.status}")
    return await payment_service.handle_webhook(
        provider=event.provider,
        provider_payment_id=event.provider_payment_id,
        status=event.status,
        order_id=event.order_id
    )


@router.get("/master/{payment_id}/allocations", response_model=AllocationReport)
async def get_allocations(
        payment_id: str,
        user: CurrentUser = Depends(require_role("admin")),
        payment_service: PaymentService = Depends(get_payment_service)
):
    """Master платеж и его распределение по дочерним платежам"""
    return await payment_service.get_allocations(payment_id)


@router.get("/order/{order_id}", response_model=List[PaymentResponse])
async def get_order_payments(
        order_id: str,
        user: CurrentUser = Depends(require_role("admin")),
        payment_service: PaymentService = Depends(get_payment_service)
):
    """Получить все платежи для заказа"""
    return await payment_service.get_payments_for_order(order_id)


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(
        payment_id: str,
        user: CurrentUser = Depends(require_role("admin")),
        payment_service: PaymentService = Depends(get_payment_service)
):
    """Получить платеж по ID"""
    payment = await payment_service.get_payment(payment_id)
    if not payment:
        raise NotFound("Payment not found", {"payment_id": payment_id})
    return payment
