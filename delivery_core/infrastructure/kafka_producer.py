import json
import logging
from aiokafka import AIOKafkaProducer

logger = logging.getLogger(__name__)


def _serialize(event: dict) -> bytes:
    return json.dumps(event, default=str, ensure_ascii=False).encode()


class KafkaProducerClient:
    """События заказов в один топик, ключ = order_id (порядок в пределах заказа)"""

    def __init__(self, bootstrap_servers: str, topic: str = "delivery.order.events"):
        self._bootstrap_servers = bootstrap_servers
        self._topic = topic
        self._producer: AIOKafkaProducer | None = None

    async def start(self):
        if not self._producer:
            self._producer = AIOKafkaProducer(
                bootstrap_servers=self._bootstrap_servers,
                key_serializer=str.encode,
                value_serializer=_serialize,
                acks="all",
                enable_idempotence=True,
            )
            await self._producer.start()
            logger.info(f"Kafka producer started, topic {self._topic}")

    async def stop(self):
        if self._producer:
            await self._producer.stop()
            self._producer = None
            logger.info("Kafka producer stopped")

    async def publish(self, event_type: str, key: str, payload: dict) -> bool:
        if not self._producer:
            logger.error("Kafka producer not started")
            return False

        try:
            await self._producer.send_and_wait(
                self._topic,
                value={"event_type": event_type, **payload},
                key=key,
                headers=[("event_type", event_type.encode())],
            )
            logger.info(f"Published {event_type} for order {key}")
            return True

        except Exception as e:
            logger.error(f"Failed to publish {event_type} for order {key}: {e}")
            return False
