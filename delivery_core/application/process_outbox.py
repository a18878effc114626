import logging
import json
from typing import List, Tuple

from delivery_core.domain.models import ActorRole, NotificationKind, OrderStatus
from delivery_core.application.events import (
    ORDER_CREATED, ORDER_STATUS_CHANGED, ORDER_CANCELLED, ORDER_COURIER_ASSIGNED
)
from delivery_core.application.interfaces import KafkaProducer, NotificationsService

logger = logging.getLogger(__name__)

Recipient = Tuple[ActorRole, str, NotificationKind]

# Кому и что отправлять при смене статуса
STATUS_NOTIFICATIONS = {
    OrderStatus.CONFIRMED: [
        (ActorRole.CUSTOMER, NotificationKind.ORDER_CONFIRMED),
        (ActorRole.RESTAURANT, NotificationKind.DRIVER_ASSIGNED),
    ],
    OrderStatus.READY: [
        (ActorRole.CUSTOMER, NotificationKind.ORDER_READY),
        (ActorRole.COURIER, NotificationKind.ORDER_READY),
    ],
    OrderStatus.PICKED_UP: [
        (ActorRole.CUSTOMER, NotificationKind.ORDER_PICKED_UP),
    ],
    OrderStatus.DELIVERED: [
        (ActorRole.CUSTOMER, NotificationKind.ORDER_DELIVERED),
        (ActorRole.RESTAURANT, NotificationKind.ORDER_DELIVERED),
    ],
}


def _party_id(event_data: dict, role: ActorRole):
    return {
        ActorRole.CUSTOMER: event_data.get("customer_id"),
        ActorRole.RESTAURANT: event_data.get("restaurant_id"),
        ActorRole.COURIER: event_data.get("courier_id"),
    }.get(role)


def route_notifications(event_type: str, event_data: dict, available_courier_ids: List[str]) -> List[Recipient]:
    """Получатели уведомлений для события outbox"""
    if event_type == ORDER_CREATED:
        recipients = [(ActorRole.RESTAURANT, event_data["restaurant_id"], NotificationKind.NEW_ORDER)]
        # Broadcast: новый заказ видят все свободные курьеры
        recipients.extend(
            (ActorRole.COURIER, courier_id, NotificationKind.NEW_DELIVERY) for courier_id in available_courier_ids
        )
        return recipients

    if event_type == ORDER_COURIER_ASSIGNED:
        return [
            (ActorRole.COURIER, event_data["courier_id"], NotificationKind.NEW_DELIVERY),
            (ActorRole.CUSTOMER, event_data["customer_id"], NotificationKind.DRIVER_ASSIGNED),
        ]

    if event_type == ORDER_CANCELLED:
        canceller = event_data.get("changed_by")
        return [
            (role, _party_id(event_data, role), NotificationKind.ORDER_CANCELLED)
            for role in (ActorRole.CUSTOMER, ActorRole.RESTAURANT, ActorRole.COURIER)
            if role.value != canceller and _party_id(event_data, role)
        ]

    if event_type == ORDER_STATUS_CHANGED:
        targets = STATUS_NOTIFICATIONS.get(OrderStatus(event_data["new_status"]), [])
        return [
            (role, _party_id(event_data, role), kind)
            for role, kind in targets
            if _party_id(event_data, role)
        ]

    return []


class ProcessOutboxEventsUseCase:
    def __init__(self, unit_of_work, kafka_producer: KafkaProducer, notifications_client: NotificationsService):
        self._uow = unit_of_work
        self._kafka = kafka_producer
        self._notifications = notifications_client

    async def __call__(self, limit: int = 10) -> int:
        """Обрабатывает pending события из outbox. Возвращает количество опубликованных."""
        published = 0

        async with self._uow() as uow:
            pending = await uow.outbox.get_pending(limit=limit)

            for event in pending:
                event_data = event["event_data"]
                if isinstance(event_data, str):
                    event_data = json.loads(event_data)

                success = await self._kafka.publish(event["event_type"], event["order_id"], event_data)
                if not success:
                    # Одна попытка: событие помечается failed и больше не обрабатывается
                    await uow.outbox.mark_as_failed(event["id"])
                    logger.error(f"Не удалось опубликовать {event['event_type']} ({event['id']}), событие отброшено")
                    continue

                couriers = []
                if event["event_type"] == ORDER_CREATED:
                    couriers = [courier.id for courier in await uow.couriers.find_available()]

                for role, recipient_id, kind in route_notifications(event["event_type"], event_data, couriers):
                    sent = await self._notifications.notify(role, recipient_id, kind, event_data)
                    if not sent:
                        logger.warning(f"Уведомление {kind.value} для {role.value} {recipient_id} не доставлено")

                await uow.outbox.mark_as_published(event["id"])
                published += 1
                logger.info(f"Опубликовано {event['event_type']} event {event['id']}")

            await uow.commit()

        return published
