import logging
from datetime import datetime
from typing import Callable, Optional

from delivery_core.domain.models import (
    Actor, ActorRole, Courier, Order, OrderStatus, StatusHistoryEntry, local_now
)
from delivery_core.domain.exceptions import (
    OrderNotFoundError, CourierNotFoundError, ForbiddenError, AlreadyAssignedError,
    InvalidTransitionError
)
from delivery_core.domain.state_machine import TIMESTAMP_FIELDS, is_courier_acceptance
from delivery_core.application.events import order_event_data

logger = logging.getLogger(__name__)


class OrderLifecycleUseCase:
    """Общие шаги смены статуса: загрузка, проверка участника, условная запись"""

    def __init__(self, unit_of_work, clock: Callable[[], datetime] = local_now):
        self._uow = unit_of_work
        self._clock = clock

    async def _load_order(self, uow, order_id: str) -> Order:
        order = await uow.orders.get_by_id(order_id)
        if not order:
            raise OrderNotFoundError(f"Заказ {order_id} не найден")
        return order

    async def _load_verified_courier(self, uow, courier_id: str) -> Courier:
        courier = await uow.couriers.get_by_id(courier_id)
        if not courier:
            raise CourierNotFoundError(f"Курьер {courier_id} не найден")
        if not courier.is_verified:
            raise ForbiddenError("Курьер не прошел проверку")
        return courier

    def _check_ownership(self, order: Order, actor: Actor, current: OrderStatus, requested: OrderStatus) -> None:
        if actor.role == ActorRole.CUSTOMER and order.customer_id != actor.id:
            raise ForbiddenError("Можно изменять только свои заказы")
        if actor.role == ActorRole.RESTAURANT and order.restaurant_id != actor.id:
            raise ForbiddenError("Можно изменять только заказы своего ресторана")
        if actor.role == ActorRole.COURIER:
            if is_courier_acceptance(current, requested):
                # Принять можно только ничейный заказ
                if order.courier_id is not None:
                    raise AlreadyAssignedError("Заказ уже принят другим курьером")
            elif order.courier_id != actor.id:
                raise ForbiddenError("Можно изменять только назначенные вам заказы")

    async def _apply(
        self,
        uow,
        order: Order,
        new_status: OrderStatus,
        changed_by: str,
        event_type: str,
        values: Optional[dict] = None,
        note: Optional[str] = None,
        expect_unassigned: bool = False,
    ) -> Order:
        """CAS по ожидаемому статусу + история + outbox, в одной транзакции"""
        now = self._clock()
        updates = dict(values or {})
        updates["status"] = new_status
        updates[TIMESTAMP_FIELDS[new_status]] = now

        applied = await uow.orders.compare_and_set(
            order.id, order.status, updates, expect_unassigned=expect_unassigned
        )
        if not applied:
            if expect_unassigned:
                raise AlreadyAssignedError("Заказ уже принят другим курьером")
            raise InvalidTransitionError(
                order.status.value, new_status.value, "статус заказа изменился, обновите данные"
            )

        updated = order.model_copy(update={**updates, "updated_at": now})
        await uow.history.add(StatusHistoryEntry(
            order_id=order.id,
            status=new_status,
            changed_by=changed_by,
            note=note,
            created_at=now,
        ))
        await uow.outbox.create(
            event_type=event_type,
            event_data=order_event_data(updated, order.status, new_status, changed_by, note),
            order_id=order.id,
        )
        return updated

    async def _release_courier(self, uow, courier_id: str) -> None:
        released = await uow.couriers.release(courier_id)
        if released:
            logger.info(f"Курьер {courier_id} снова свободен")
        else:
            logger.warning(f"Курьер {courier_id} уже был свободен")
