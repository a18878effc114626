import logging
from datetime import datetime
from typing import Callable, List, Optional

from delivery_core.domain.geo import haversine_km
from delivery_core.domain.models import Actor, ActorRole, Courier, Order, OrderStatus, local_now
from delivery_core.domain.exceptions import AlreadyAssignedError, ForbiddenError, InvalidTransitionError
from delivery_core.application.events import ORDER_COURIER_ASSIGNED, order_event_data
from delivery_core.application.order_lifecycle import OrderLifecycleUseCase

logger = logging.getLogger(__name__)

# pending: обычная автодиспетчеризация. confirmed/preparing/ready без курьера
# штатно не возникают (confirmed ставит принятие или назначение); это путь
# ручного исправления данных администратором или рестораном.
ASSIGNABLE_STATUSES = frozenset({
    OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.READY
})

DISPATCHER = "system"


def rank_candidates(couriers: List[Courier], order: Order, radius_km: float) -> List[Courier]:
    """Ближайшие в радиусе от точки доставки, без точки доставки все в порядке выборки"""
    eligible = [c for c in couriers if c.can_be_dispatched()]
    if not order.has_destination():
        return eligible
    in_radius = []
    for courier in eligible:
        if not courier.has_location():
            continue
        distance = haversine_km(
            order.delivery_latitude, order.delivery_longitude,
            courier.current_latitude, courier.current_longitude,
        )
        if distance <= radius_km:
            in_radius.append((distance, courier))
    in_radius.sort(key=lambda pair: pair[0])
    return [courier for _, courier in in_radius]


class AssignCourierUseCase(OrderLifecycleUseCase):
    """Диспетчер: ближайший свободный курьер для заказа без курьера"""

    def __init__(self, unit_of_work, radius_km: float = 5.0, clock: Callable[[], datetime] = local_now):
        super().__init__(unit_of_work, clock)
        self._radius_km = radius_km

    async def __call__(self, order_id: str, actor: Optional[Actor] = None) -> Optional[Courier]:
        if actor and actor.role not in (ActorRole.ADMIN, ActorRole.RESTAURANT):
            raise ForbiddenError("Назначать курьера могут ресторан и администратор")
        async with self._uow() as uow:
            order = await self._load_order(uow, order_id)
            if actor and actor.role == ActorRole.RESTAURANT and order.restaurant_id != actor.id:
                raise ForbiddenError("Можно назначать курьера только на заказы своего ресторана")
            if order.courier_id is not None:
                raise AlreadyAssignedError(f"У заказа {order_id} уже есть курьер")
            if order.status not in ASSIGNABLE_STATUSES:
                raise InvalidTransitionError(order.status.value, OrderStatus.CONFIRMED.value, "назначение курьера")

            candidates = rank_candidates(await uow.couriers.find_available(), order, self._radius_km)

            chosen = None
            for courier in candidates:
                # Кандидата мог занять параллельный запрос, пробуем следующего
                if await uow.couriers.try_reserve(courier.id):
                    chosen = courier
                    break

            if chosen is None:
                logger.info(f"Нет свободных курьеров для заказа {order_id}")
                return None

            if order.status == OrderStatus.PENDING:
                # Назначение за курьера равносильно его принятию заказа
                await self._apply(
                    uow,
                    order,
                    OrderStatus.CONFIRMED,
                    changed_by=DISPATCHER,
                    event_type=ORDER_COURIER_ASSIGNED,
                    values={"courier_id": chosen.id},
                    note="auto-dispatch",
                    expect_unassigned=True,
                )
            else:
                applied = await uow.orders.compare_and_set(
                    order.id, order.status,
                    {"courier_id": chosen.id, "updated_at": self._clock()},
                    expect_unassigned=True,
                )
                if not applied:
                    raise AlreadyAssignedError(f"У заказа {order_id} уже есть курьер")
                assigned = order.model_copy(update={"courier_id": chosen.id})
                await uow.outbox.create(
                    event_type=ORDER_COURIER_ASSIGNED,
                    event_data=order_event_data(assigned, order.status, order.status, DISPATCHER),
                    order_id=order.id,
                )

            await uow.commit()

        logger.info(f"Заказ {order_id}: назначен курьер {chosen.id}")
        return chosen.model_copy(update={"is_available": False})
