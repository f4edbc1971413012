import uuid
from decimal import Decimal
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from ..database import transaction
from ..errors import MarketplaceError, NotFound, Forbidden, AlreadyPaid, InvalidTransition
from ..models.order import Order, OrderStatus, can_transition
from ..models.payment import Payment, PaymentStatus, WEBHOOK_ORDER_STATUS
from ..schemas.payment import (
    AllocationReport,
    AllocationSummary,
    PaymentResponse,
    PaymentResult,
    WebhookResult,
)
from ..events.producer import event_producer
from ..utils.money import to_money
from ..utils.retry import store_retry
import logging

logger = logging.getLogger(__name__)


class PaymentService:
    """
    Применение результатов оплаты к иерархии заказов.

    Порядок блокировок везде одинаковый: сначала строка заказа,
    затем его дочерние заказы (по id), затем платежи.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # ------------------------------------------------------------------
    # Прямая оплата
    # ------------------------------------------------------------------

    @store_retry()
    async def pay_order(
            self,
            order_id: str,
            provider: str,
            provider_payment_id: Optional[str] = None,
            amount: Optional[Decimal] = None,
            buyer_id: Optional[int] = None
    ) -> PaymentResult:
        """
        Оплата заказа вызывающей стороной.
        Оплата master заказа закрывает всю иерархию одной транзакцией.
        """
        try:
            async with transaction(self.db):
                order = await self._lock_order(order_id)
                if order is None:
                    raise NotFound("Order not found", {"order_id": order_id})

                if buyer_id is not None and order.buyer_id != buyer_id:
                    raise Forbidden("Not your order", {"order_id": order_id})

                if order.status == OrderStatus.PAID:
                    raise AlreadyPaid(order.id)
                if not can_transition(order.status, OrderStatus.PAID):
                    raise InvalidTransition(order.id, order.status.value, OrderStatus.PAID.value)

                pay_amount = to_money(amount if amount is not None else order.total_amount)
                payment = self._new_payment(
                    order_id=order.id,
                    provider=provider,
                    provider_payment_id=provider_payment_id,
                    amount=pay_amount,
                    status=PaymentStatus.PAID.value
                )
                self.db.add(payment)
                await self.db.flush()

                self._apply_order_status(order, OrderStatus.PAID)

                if order.is_master:
                    children = await self._lock_children(order.id)
                    linked = await self._fan_out(payment, children, PaymentStatus.PAID.value)
                    for child in children:
                        self._apply_order_status(child, OrderStatus.PAID)

                    result = PaymentResult(
                        status=PaymentStatus.PAID.value,
                        master_payment_id=payment.id,
                        master_order_id=order.id,
                        children_count=len(children),
                        linked_payment_ids=[p.id for p in linked]
                    )
                else:
                    result = PaymentResult(
                        status=PaymentStatus.PAID.value,
                        payment_id=payment.id,
                        order_id=order.id
                    )

                await self.db.flush()

        except MarketplaceError as e:
            logger.warning(f"⚠️ Payment for order {order_id} rejected: {e.message}")
            raise
        except Exception as e:
            logger.error(f"❌ Error paying order {order_id}: {e}")
            raise

        logger.info(f"💳 Order {order_id} paid via {provider} (payment {payment.id})")
        await self._publish_order_paid_event(result, provider, pay_amount)
        return result

    # ------------------------------------------------------------------
    # Вебхук провайдера
    # ------------------------------------------------------------------

    @store_retry()
    async def handle_webhook(
            self,
            provider: str,
            provider_payment_id: str,
            status: str,
            order_id: Optional[str] = None
    ) -> WebhookResult:
        """
        Применяет событие провайдера. Доставка at-least-once:
        повторная доставка того же события не меняет итоговое состояние
        и не создает дочерние платежи второй раз.
        """
        normalized = str(status).strip().lower()
        target = WEBHOOK_ORDER_STATUS.get(normalized)

        try:
            async with transaction(self.db):
                existing = await self._find_root_payment(provider, provider_payment_id)
                target_order_id = existing.order_id if existing is not None else order_id

                if target_order_id is None:
                    logger.info(
                        f"🔎 Webhook {provider}/{provider_payment_id}: no payment and no order_id, nothing to reconcile"
                    )
                    return WebhookResult(reconciled=False, message="Payment record not found")

                order = await self._lock_order(target_order_id)
                if order is None:
                    logger.warning(f"⚠️ Webhook {provider}/{provider_payment_id}: order {target_order_id} not found")
                    return WebhookResult(reconciled=False, message="Order not found")

                # Повторное чтение под блокировкой заказа: параллельная доставка
                # того же события могла создать платеж, пока мы ждали
                payment = await self._find_root_payment(provider, provider_payment_id, for_update=True)
                created = payment is None

                if created:
                    payment = self._new_payment(
                        order_id=order.id,
                        provider=provider,
                        provider_payment_id=provider_payment_id,
                        amount=to_money(order.total_amount),
                        status=normalized
                    )
                    self.db.add(payment)
                else:
                    payment.status = normalized
                await self.db.flush()

                await self._reconcile_order(order, payment, normalized, target)

                result = WebhookResult(
                    reconciled=True,
                    created=created,
                    payment_id=payment.id,
                    status=normalized,
                    message=(
                        "Payment created via webhook and status applied" if created
                        else "Payment status updated via webhook"
                    )
                )
                reconciled_order_id = order.id

        except MarketplaceError as e:
            logger.warning(f"⚠️ Webhook {provider}/{provider_payment_id} rejected: {e.message}")
            raise
        except Exception as e:
            logger.error(f"❌ Error handling webhook {provider}/{provider_payment_id}: {e}")
            raise

        logger.info(f"✅ Webhook {provider}/{provider_payment_id} applied: payment {result.payment_id} -> {normalized}")
        await self._publish_payment_reconciled_event(result, reconciled_order_id, provider, provider_payment_id)
        return result

    async def _reconcile_order(
            self,
            order: Order,
            payment: Payment,
            normalized: str,
            target: Optional[OrderStatus]
    ):
        """Распространяет статус платежа на заказ и, для master, на дочерние заказы и платежи"""
        if target is None:
            # Неизвестный статус: платеж хранит его как есть, заказы не трогаем
            logger.warning(
                f"⚠️ Unknown payment status '{normalized}' for payment {payment.id}, order {order.id} left unchanged"
            )
            return

        if order.is_master:
            children = await self._lock_children(order.id)

            linked_count = await self._count_linked(payment.id)
            if linked_count == 0:
                if children:
                    await self._fan_out(payment, children, normalized)
            else:
                await self._sync_linked_status(payment.id, normalized)

            self._apply_order_status(order, target)
            for child in children:
                self._apply_order_status(child, target)
        else:
            self._apply_order_status(order, target)

        await self.db.flush()

    # ------------------------------------------------------------------
    # Аудит распределения
    # ------------------------------------------------------------------

    async def get_allocations(self, master_payment_id: str) -> AllocationReport:
        """Сверка суммы master платежа с суммой связанных дочерних платежей (только чтение)"""
        master = await self.get_payment(master_payment_id)
        if master is None:
            raise NotFound("Payment not found", {"payment_id": master_payment_id})

        allocations = await self.get_linked_payments(master.id)

        master_amount = to_money(master.amount)
        allocated_total = to_money(sum((to_money(p.amount) for p in allocations), Decimal("0")))
        summary = AllocationSummary(
            children_count=len(allocations),
            master_amount=master_amount,
            allocated_total=allocated_total,
            allocation_match=master_amount == allocated_total
        )

        if not summary.allocation_match:
            logger.warning(
                f"⚠️ Allocation mismatch for master payment {master.id}: "
                f"master {master_amount}, allocated {allocated_total}"
            )

        return AllocationReport(
            master=PaymentResponse.model_validate(master),
            allocations=[PaymentResponse.model_validate(p) for p in allocations],
            summary=summary
        )

    # ------------------------------------------------------------------
    # Чтение
    # ------------------------------------------------------------------

    async def get_payment(self, payment_id: str) -> Optional[Payment]:
        """Получает платеж по ID"""
        result = await self.db.execute(select(Payment).where(Payment.id == payment_id))
        return result.scalar_one_or_none()

    async def get_payments_for_order(self, order_id: str) -> List[Payment]:
        """Получает все платежи для заказа"""
        query = select(Payment).where(Payment.order_id == order_id).order_by(Payment.created_at, Payment.id)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_linked_payments(self, master_payment_id: str) -> List[Payment]:
        query = (
            select(Payment)
            .where(Payment.linked_payment_id == master_payment_id)
            .order_by(Payment.created_at, Payment.id)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Внутренние шаги
    # ------------------------------------------------------------------

    async def _lock_order(self, order_id: str) -> Optional[Order]:
        query = (
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def _lock_children(self, master_id: str) -> List[Order]:
        query = (
            select(Order)
            .where(Order.parent_order_id == master_id)
            .order_by(Order.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def _find_root_payment(
            self,
            provider: str,
            provider_payment_id: str,
            for_update: bool = False
    ) -> Optional[Payment]:
        """
        Платеж по ключу идемпотентности (provider, provider_payment_id).
        Дочерние платежи несут тот же ключ, поэтому берем только корневой.
        """
        query = (
            select(Payment)
            .where(
                Payment.provider == provider,
                Payment.provider_payment_id == provider_payment_id,
                Payment.linked_payment_id.is_(None)
            )
            .order_by(Payment.created_at, Payment.id)
            .limit(1)
        )
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def _count_linked(self, master_payment_id: str) -> int:
        query = select(func.count(Payment.id)).where(Payment.linked_payment_id == master_payment_id)
        return (await self.db.execute(query)).scalar() or 0

    async def _fan_out(self, master_payment: Payment, children: List[Order], status: str) -> List[Payment]:
        """Создает по одному связанному платежу на каждый дочерний заказ"""
        linked = []
        for child in children:
            child_payment = self._new_payment(
                order_id=child.id,
                provider=master_payment.provider,
                provider_payment_id=master_payment.provider_payment_id,
                amount=to_money(child.total_amount),
                status=status,
                linked_payment_id=master_payment.id
            )
            self.db.add(child_payment)
            linked.append(child_payment)

        await self.db.flush()
        logger.info(f"🔗 Created {len(linked)} linked payment(s) for master payment {master_payment.id}")
        return linked

    async def _sync_linked_status(self, master_payment_id: str, status: str):
        for child_payment in await self.get_linked_payments(master_payment_id):
            child_payment.status = status

    @staticmethod
    def _apply_order_status(order: Order, target: OrderStatus) -> bool:
        """Переход по таблице состояний; недопустимый переход пропускается с предупреждением"""
        if order.status == target:
            return False
        if not can_transition(order.status, target):
            logger.warning(
                f"⚠️ Order {order.id}: transition {order.status.value} -> {target.value} not allowed, skipped"
            )
            return False
        order.status = target
        return True

    @staticmethod
    def _new_payment(
            order_id: str,
            provider: str,
            provider_payment_id: Optional[str],
            amount: Decimal,
            status: str,
            linked_payment_id: Optional[str] = None
    ) -> Payment:
        return Payment(
            id=str(uuid.uuid4()),
            order_id=order_id,
            provider=provider,
            provider_payment_id=provider_payment_id,
            amount=amount,
            status=status,
            linked_payment_id=linked_payment_id
        )

    async def _publish_order_paid_event(self, result: PaymentResult, provider: str, amount: Decimal):
        """Публикует событие оплаты заказа"""
        try:
            payload = {
                "order_id": result.master_order_id or result.order_id,
                "payment_id": result.master_payment_id or result.payment_id,
                "provider": provider,
                "amount": str(amount),
                "linked_payment_ids": result.linked_payment_ids or [],
                "status": result.status
            }

            await event_producer.publish_order_paid(payload)

        except Exception as e:
            logger.error(f"❌ Failed to publish order_paid event: {e}")

    async def _publish_payment_reconciled_event(
            self,
            result: WebhookResult,
            order_id: str,
            provider: str,
            provider_payment_id: str
    ):
        """Публикует событие применения вебхука"""
        try:
            payload = {
                "order_id": order_id,
                "payment_id": result.payment_id,
                "provider": provider,
                "provider_payment_id": provider_payment_id,
                "status": result.status,
                "created": result.created
            }

            await event_producer.publish_payment_reconciled(payload)

        except Exception as e:
            logger.error(f"❌ Failed to publish payment_reconciled event: {e}")
