import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaConnectionError, KafkaTimeoutError

from ..config import settings

logger = logging.getLogger(__name__)


class MarketplaceEventProducer:
    """
    Producer доменных событий.

    События публикуются только после успешного commit, ошибка
    публикации логируется и не влияет на результат операции.
    """

    def __init__(self):
        self.producer: Optional[AIOKafkaProducer] = None
        self.bootstrap_servers = settings.kafka_bootstrap_servers

    async def start(self):
        """Запуск Kafka продюсера"""
        try:
            self.producer = AIOKafkaProducer(
                bootstrap_servers=self.bootstrap_servers,
                value_serializer=lambda v: json.dumps(v, default=str).encode('utf-8'),
                key_serializer=lambda k: k.encode('utf-8') if k else None,
                retry_backoff_ms=1000,
                request_timeout_ms=30000,
                compression_type="gzip",
                acks='all',
                enable_idempotence=True
            )
            await self.producer.start()
            logger.info("✅ Marketplace event producer started successfully")
        except Exception as e:
            self.producer = None
            logger.error(f"❌ Failed to start marketplace event producer: {e}")
            raise

    async def stop(self):
        """Остановка Kafka продюсера"""
        if self.producer:
            try:
                await self.producer.stop()
                logger.info("✅ Marketplace event producer stopped")
            except Exception as e:
                logger.error(f"❌ Error stopping marketplace event producer: {e}")
            finally:
                self.producer = None

    async def publish_event(
            self,
            topic: str,
            event_type: str,
            payload: Dict[str, Any],
            key: Optional[str] = None
    ) -> bool:
        """
        Публикация события в Kafka

        Args:
            topic: Название топика
            event_type: Тип события
            payload: Данные события
            key: Ключ для партиционирования (опционально)

        Returns:
            bool: True если успешно отправлено
        """
        if not self.producer:
            logger.debug(f"Event producer not started, skipping {event_type}")
            return False

        try:
            event = {
                "event_id": str(uuid.uuid4()),
                "event_type": event_type,
                "event_timestamp": datetime.now(timezone.utc).isoformat(),
                "producer_service": "marketplace-service",
                "payload": payload
            }

            record_metadata = await self.producer.send_and_wait(topic, value=event, key=key)

            logger.info(
                f"✅ Event published: {event_type} to {topic} "
                f"(partition: {record_metadata.partition}, offset: {record_metadata.offset})"
            )
            return True

        except KafkaTimeoutError:
            logger.error(f"❌ Timeout publishing event {event_type} to {topic}")
            return False
        except KafkaConnectionError:
            logger.error(f"❌ Connection error publishing event {event_type} to {topic}")
            return False
        except Exception as e:
            logger.error(f"❌ Error publishing event {event_type} to {topic}: {e}")
            return False

    async def publish_order_created(self, order_data: Dict[str, Any]) -> bool:
        """Событие создания иерархии заказов"""
        return await self.publish_event(
            topic="order.created",
            event_type="order_created",
            payload=order_data,
            key=str(order_data.get("master_order_id"))
        )

    async def publish_order_paid(self, payment_data: Dict[str, Any]) -> bool:
        """Событие прямой оплаты заказа"""
        return await self.publish_event(
            topic="order.paid",
            event_type="order_paid",
            payload=payment_data,
            key=str(payment_data.get("order_id"))
        )

    async def publish_payment_reconciled(self, payment_data: Dict[str, Any]) -> bool:
        """Событие применения вебхука провайдера"""
        return await self.publish_event(
            topic="payment.reconciled",
            event_type="payment_reconciled",
            payload=payment_data,
            key=str(payment_data.get("order_id"))
        )


# Глобальный экземпляр продюсера
event_producer = MarketplaceEventProducer()