import logging
from typing import Optional
from pydantic import BaseModel

from delivery_core.domain.models import Actor, ActorRole, Order, OrderStatus
from delivery_core.domain.codes import confirmation_code_matches
from delivery_core.domain.exceptions import CourierUnavailableError, InvalidConfirmationCodeError
from delivery_core.domain.state_machine import (
    CODE_REQUIRED_TRANSITIONS, ensure_can_cancel, ensure_role, ensure_transition, is_courier_acceptance
)
from delivery_core.application.events import ORDER_CANCELLED, ORDER_STATUS_CHANGED
from delivery_core.application.order_lifecycle import OrderLifecycleUseCase

logger = logging.getLogger(__name__)


class ChangeStatusDTO(BaseModel):
    order_id: str
    actor: Actor
    new_status: OrderStatus
    note: Optional[str] = None
    confirmation_code: Optional[str] = None


class ChangeOrderStatusUseCase(OrderLifecycleUseCase):
    async def __call__(self, dto: ChangeStatusDTO) -> Order:
        actor = dto.actor
        async with self._uow() as uow:
            # 1. Заказ
            order = await self._load_order(uow, dto.order_id)
            current, requested = order.status, dto.new_status

            # Отмена через смену статуса подчиняется тем же правилам отмены
            if requested == OrderStatus.CANCELLED:
                ensure_can_cancel(current, actor.role)

            # 2. Таблица переходов, 3. роль, 4. участник заказа
            ensure_transition(current, requested)
            ensure_role(current, requested, actor.role)
            self._check_ownership(order, actor, current, requested)
            if actor.role == ActorRole.COURIER:
                await self._load_verified_courier(uow, actor.id)

            # Код подтверждения проверяется до любых изменений
            if (current, requested) in CODE_REQUIRED_TRANSITIONS:
                if not confirmation_code_matches(dto.confirmation_code, order.confirmation_code):
                    logger.warning(f"[SECURITY] Неверный код для заказа {order.id} от курьера {actor.id}")
                    raise InvalidConfirmationCodeError("Неверный код подтверждения")

            values: dict = {}
            accepting = is_courier_acceptance(current, requested)
            if accepting:
                # Сначала резерв курьера, затем условная запись заказа;
                # при проигрыше гонки откат транзакции вернет курьера
                if not await uow.couriers.try_reserve(actor.id):
                    raise CourierUnavailableError("Курьер офлайн или уже занят другим заказом")
                values["courier_id"] = actor.id

            if requested == OrderStatus.CANCELLED:
                values["cancelled_by"] = actor.role
                values["cancellation_reason"] = dto.note

            updated = await self._apply(
                uow,
                order,
                requested,
                changed_by=actor.role.value,
                event_type=ORDER_CANCELLED if requested == OrderStatus.CANCELLED else ORDER_STATUS_CHANGED,
                values=values,
                note=dto.note,
                expect_unassigned=accepting,
            )

            if requested in (OrderStatus.DELIVERED, OrderStatus.CANCELLED) and order.courier_id:
                await self._release_courier(uow, order.courier_id)
            if requested == OrderStatus.DELIVERED and order.courier_id:
                await uow.couriers.record_delivery(order.courier_id, order.delivery_fee)

            await uow.commit()

        logger.info(f"Заказ {order.id}: {current.value} -> {requested.value} ({actor.role.value})")
        return updated
