import asyncio
import logging

from delivery_core.database import AsyncSessionLocal
from delivery_core.infrastructure.unit_of_work import UnitOfWork
from delivery_core.infrastructure.http_clients import HTTPNotificationsClient
from delivery_core.infrastructure.kafka_producer import KafkaProducerClient
from delivery_core.application.process_outbox import ProcessOutboxEventsUseCase
from delivery_core.config import settings

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


async def outbox_worker():
    """Worker для обработки outbox событий"""
    logger.info("Outbox worker запущен")

    kafka_producer = KafkaProducerClient(settings.KAFKA_BOOTSTRAP_SERVERS, settings.KAFKA_ORDER_EVENTS_TOPIC)
    notifications_client = HTTPNotificationsClient(settings.NOTIFICATIONS_BASE_URL, settings.API_TOKEN)
    await kafka_producer.start()

    use_case = ProcessOutboxEventsUseCase(
        unit_of_work=UnitOfWork(AsyncSessionLocal),
        kafka_producer=kafka_producer,
        notifications_client=notifications_client
    )

    try:
        while True:
            try:
                processed = await use_case(limit=settings.OUTBOX_BATCH_SIZE)
                if processed:
                    logger.info(f"Обработано {processed} outbox events")
                await asyncio.sleep(settings.OUTBOX_POLL_SECONDS)

            except Exception as e:
                logger.error(f"Ошибка в outbox worker: {e}", exc_info=True)
                await asyncio.sleep(10)
    finally:
        await kafka_producer.stop()


async def main():
    await outbox_worker()


if __name__ == "__main__":
    asyncio.run(main())
