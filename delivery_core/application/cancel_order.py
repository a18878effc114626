import logging
from typing import Optional
from pydantic import BaseModel

from delivery_core.domain.models import Actor, Order, OrderStatus
from delivery_core.domain.state_machine import ensure_can_cancel
from delivery_core.application.events import ORDER_CANCELLED
from delivery_core.application.order_lifecycle import OrderLifecycleUseCase

logger = logging.getLogger(__name__)


class CancelOrderDTO(BaseModel):
    order_id: str
    actor: Actor
    reason: str
    details: Optional[str] = None


class CancelOrderUseCase(OrderLifecycleUseCase):
    async def __call__(self, dto: CancelOrderDTO) -> Order:
        actor = dto.actor
        async with self._uow() as uow:
            order = await self._load_order(uow, dto.order_id)
            previous = order.status

            # После pickup отмена невозможна ни для кого
            ensure_can_cancel(previous, actor.role)
            self._check_ownership(order, actor, previous, OrderStatus.CANCELLED)

            reason = dto.details or dto.reason
            updated = await self._apply(
                uow,
                order,
                OrderStatus.CANCELLED,
                changed_by=actor.role.value,
                event_type=ORDER_CANCELLED,
                values={"cancelled_by": actor.role, "cancellation_reason": reason},
                note=reason,
            )
            if order.courier_id:
                await self._release_courier(uow, order.courier_id)

            await uow.commit()

        logger.info(f"Заказ {order.id} отменен ({actor.role.value}), предыдущий статус {previous.value}")
        return updated
