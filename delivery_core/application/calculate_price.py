import logging
import uuid
from datetime import datetime
from typing import Callable, Optional
from pydantic import BaseModel

from delivery_core.domain import pricing
from delivery_core.domain.geo import point_in_polygon
from delivery_core.domain.models import (
    DeliveryZone, PricingCalculation, PricingConfig, PricingResult, VehicleType,
    WeatherCondition, Multipliers, Bonuses, local_now
)
from delivery_core.application.demand import CurrentDemandUseCase
from delivery_core.application.weather import WeatherService

logger = logging.getLogger(__name__)


class CalculatePriceDTO(BaseModel):
    distance_km: float
    delivery_latitude: float
    delivery_longitude: float
    restaurant_latitude: Optional[float] = None
    restaurant_longitude: Optional[float] = None
    vehicle_type: VehicleType = VehicleType.MOTO
    has_rain_gear: bool = False
    weather_override: Optional[WeatherCondition] = None
    order_id: Optional[str] = None
    courier_id: Optional[str] = None


class CalculatePriceUseCase:
    """
    Движок цены доставки.

    Никогда не бросает исключение вызывающему: при сбое зоны/погоды/спроса
    возвращает базовую цену с предупреждением (degraded).
    """

    def __init__(
        self,
        unit_of_work,
        weather_service: WeatherService,
        demand_use_case: CurrentDemandUseCase,
        clock: Callable[[], datetime] = local_now,
    ):
        self._uow = unit_of_work
        self._weather = weather_service
        self._demand = demand_use_case
        self._clock = clock

    async def __call__(self, dto: CalculatePriceDTO) -> PricingResult:
        logger.info(f"Расчет цены для расстояния {dto.distance_km} км")

        config = await self._get_config()
        base = pricing.base_price(config, dto.distance_km)

        try:
            zone = await self._resolve_zone(dto.delivery_latitude, dto.delivery_longitude)

            if dto.weather_override:
                weather = dto.weather_override
                weather_degraded = False
            else:
                reading = await self._weather.current(dto.delivery_latitude, dto.delivery_longitude)
                weather = reading.condition
                weather_degraded = reading.from_fallback

            demand = await self._demand(zone.id if zone else None)

            async with self._uow() as uow:
                rules = await uow.pricing.list_rules()

            now = self._clock()
            multipliers = pricing.compute_multipliers(
                rules=rules,
                zone_multiplier=zone.multiplier if zone else 1.0,
                hour=now.hour,
                weather=weather,
                demand_ratio=demand.demand_ratio,
                vehicle_type=dto.vehicle_type,
            )
            bonuses = pricing.compute_bonuses(
                hour=now.hour,
                weather=weather,
                has_rain_gear=dto.has_rain_gear,
                zone_kind=zone.kind if zone else None,
            )
        except Exception as e:
            logger.error(f"Ошибка расчета цены, упрощенный режим: {e}")
            return self._fallback(config, base)

        final = pricing.finalize_price(base * multipliers.product() + bonuses.total(), config)
        warnings = pricing.build_warnings(weather, multipliers)
        if weather_degraded:
            warnings.append(pricing.DEGRADED_WARNING)

        result = PricingResult(
            final_price=final,
            base_price=round(base),
            multipliers=multipliers,
            bonuses=bonuses,
            breakdown=pricing.build_breakdown(base, multipliers, bonuses, final),
            warnings=warnings,
            degraded=weather_degraded,
            zone_id=zone.id if zone else None,
        )
        result.calculation_id = await self._save_calculation(
            dto, result, weather, zone, demand.available_couriers, demand.pending_orders
        )

        logger.info(f"Цена рассчитана: {result.final_price} DA")
        return result

    async def _get_config(self) -> PricingConfig:
        try:
            async with self._uow() as uow:
                values = await uow.pricing.get_config_values()
            return PricingConfig.from_values(values)
        except Exception as e:
            logger.warning(f"Конфигурация цен недоступна, используем значения по умолчанию: {e}")
            return PricingConfig()

    async def _resolve_zone(self, latitude: float, longitude: float) -> Optional[DeliveryZone]:
        async with self._uow() as uow:
            zones = await uow.pricing.list_zones()
        for zone in zones:
            if point_in_polygon(latitude, longitude, zone.polygon):
                return zone
        # Зона по умолчанию: множитель 1.0
        return None

    def _fallback(self, config: PricingConfig, base: float) -> PricingResult:
        final = pricing.finalize_price(base, config)
        return PricingResult(
            final_price=final,
            base_price=round(base),
            multipliers=Multipliers(),
            bonuses=Bonuses(),
            breakdown=f"Базовая цена: {round(base)} DA\nИтого: {round(final)} DA",
            warnings=[pricing.DEGRADED_WARNING],
            degraded=True,
        )

    async def _save_calculation(
        self, dto: CalculatePriceDTO, result: PricingResult, weather: WeatherCondition,
        zone: Optional[DeliveryZone], available_couriers: int, pending_orders: int
    ) -> Optional[str]:
        calculation = PricingCalculation(
            id=str(uuid.uuid4()),
            order_id=dto.order_id,
            courier_id=dto.courier_id,
            distance_km=dto.distance_km,
            base_price=result.base_price,
            final_price=result.final_price,
            multipliers=result.multipliers,
            bonuses=result.bonuses,
            weather_condition=weather,
            vehicle_type=dto.vehicle_type,
            zone_id=zone.id if zone else None,
            available_couriers=available_couriers,
            pending_orders=pending_orders,
            breakdown=result.breakdown,
            warnings=result.warnings,
            created_at=self._clock(),
        )
        try:
            async with self._uow() as uow:
                await uow.pricing.add_calculation(calculation)
                await uow.commit()
            return calculation.id
        except Exception as e:
            logger.warning(f"Не удалось сохранить расчет цены: {e}")
            return None
