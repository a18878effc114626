from typing import List, Optional
from pydantic import BaseModel

from delivery_core.domain.models import Actor, ActorRole, Order, OrderItem, StatusHistoryEntry
from delivery_core.domain.exceptions import ForbiddenError, OrderNotFoundError


class OrderDetails(BaseModel):
    order: Order
    items: List[OrderItem]
    history: List[StatusHistoryEntry]


def can_view(order: Order, actor: Actor) -> bool:
    """Участники заказа; свободные курьеры видят еще не принятые заказы"""
    if actor.role == ActorRole.ADMIN:
        return True
    if actor.role == ActorRole.CUSTOMER:
        return order.customer_id == actor.id
    if actor.role == ActorRole.RESTAURANT:
        return order.restaurant_id == actor.id
    return order.courier_id is None or order.courier_id == actor.id


class GetOrderUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, order_id: str, actor: Optional[Actor] = None) -> OrderDetails:
        async with self._uow() as uow:
            order = await uow.orders.get_by_id(order_id)
            if not order:
                raise OrderNotFoundError(f"Заказ {order_id} не найден")
            if actor and not can_view(order, actor):
                raise ForbiddenError("Нет доступа к заказу")
            items = await uow.orders.get_items(order_id)
            history = await uow.history.list_for_order(order_id)
        return OrderDetails(order=order, items=items, history=history)
