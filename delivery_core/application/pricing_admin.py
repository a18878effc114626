import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional
from pydantic import BaseModel

from delivery_core.domain.models import (
    Actor, ActorRole, DeliveryZone, Multipliers, PricingConfig, PricingRule, local_now
)
from delivery_core.domain.exceptions import ForbiddenError, NotFoundError, InvalidPricingConfigError

logger = logging.getLogger(__name__)


class PricingAnalytics(BaseModel):
    start_date: datetime
    end_date: datetime
    total_calculations: int
    average_price: float
    total_revenue: float
    average_multipliers: Multipliers


class GetPricingSettingsUseCase:
    """Текущие параметры цены: конфиг с дефолтами, зоны, правила"""

    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def config(self) -> PricingConfig:
        async with self._uow() as uow:
            values = await uow.pricing.get_config_values()
        return PricingConfig.from_values(values)

    async def zones(self) -> List[DeliveryZone]:
        async with self._uow() as uow:
            return await uow.pricing.list_zones()

    async def rules(self) -> List[PricingRule]:
        async with self._uow() as uow:
            rules = await uow.pricing.list_rules()
        return sorted(rules, key=lambda rule: rule.priority, reverse=True)


class UpdatePricingConfigUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, actor: Actor, name: str, value: float, description: Optional[str] = None) -> PricingConfig:
        if actor.role != ActorRole.ADMIN:
            raise ForbiddenError("Изменять параметры цены может только администратор")
        if name not in PricingConfig.model_fields:
            raise NotFoundError(f"Параметр {name} не найден")

        async with self._uow() as uow:
            await uow.pricing.upsert_config_value(name, value, description)
            values = await uow.pricing.get_config_values()
            # Проверяем итоговый конфиг до коммита
            config = PricingConfig.from_values({**values, name: value})
            if config.min_price > config.max_price:
                raise InvalidPricingConfigError("min_price не может быть больше max_price")
            await uow.commit()

        logger.info(f"Параметр цены {name} = {value} (администратор {actor.id})")
        return config


class GetPricingAnalyticsUseCase:
    def __init__(self, unit_of_work, clock: Callable[[], datetime] = local_now):
        self._uow = unit_of_work
        self._clock = clock

    async def __call__(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> PricingAnalytics:
        end = end or self._clock()
        start = start or end - timedelta(days=30)

        async with self._uow() as uow:
            calculations = await uow.pricing.list_calculations(start, end)

        count = len(calculations)
        if not count:
            return PricingAnalytics(
                start_date=start, end_date=end, total_calculations=0,
                average_price=0, total_revenue=0, average_multipliers=Multipliers(),
            )

        revenue = sum(c.final_price for c in calculations)

        def average(field: str) -> float:
            return round(sum(getattr(c.multipliers, field) for c in calculations) / count, 2)

        return PricingAnalytics(
            start_date=start,
            end_date=end,
            total_calculations=count,
            average_price=round(revenue / count, 2),
            total_revenue=revenue,
            average_multipliers=Multipliers(
                zone=average("zone"),
                time=average("time"),
                weather=average("weather"),
                demand=average("demand"),
                vehicle=average("vehicle"),
            ),
        )
