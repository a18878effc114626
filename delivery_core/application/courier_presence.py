import logging
from typing import Optional
from pydantic import BaseModel

from delivery_core.domain.models import Courier
from delivery_core.domain.exceptions import CourierNotFoundError

logger = logging.getLogger(__name__)


class CourierPresenceDTO(BaseModel):
    courier_id: str
    is_online: Optional[bool] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class UpdateCourierPresenceUseCase:
    """Онлайн/офлайн и координаты курьера; занятость (is_available) не трогаем"""

    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, dto: CourierPresenceDTO) -> Courier:
        async with self._uow() as uow:
            courier = await uow.couriers.get_by_id(dto.courier_id)
            if not courier:
                raise CourierNotFoundError(f"Курьер {dto.courier_id} не найден")
            await uow.couriers.update_presence(dto.courier_id, dto.is_online, dto.latitude, dto.longitude)
            await uow.commit()

        updates = {}
        if dto.is_online is not None:
            updates["is_online"] = dto.is_online
        if dto.latitude is not None and dto.longitude is not None:
            updates["current_latitude"] = dto.latitude
            updates["current_longitude"] = dto.longitude
        logger.info(f"Курьер {dto.courier_id}: онлайн={updates.get('is_online', courier.is_online)}")
        return courier.model_copy(update=updates)
