import logging
from datetime import datetime, timedelta
from typing import Callable

from delivery_core.domain.geo import is_within_radius
from delivery_core.domain.models import WeatherCondition, WeatherObservation, WeatherReading, local_now
from delivery_core.application.interfaces import WeatherProvider

logger = logging.getLogger(__name__)


class WeatherService:
    """Погода по координатам: кэш в БД (TTL, радиус) -> провайдер -> clear"""

    def __init__(
        self,
        unit_of_work,
        provider: WeatherProvider,
        ttl_seconds: int = 3600,
        radius_km: float = 5.0,
        clock: Callable[[], datetime] = local_now,
    ):
        self._uow = unit_of_work
        self._provider = provider
        self._ttl = timedelta(seconds=ttl_seconds)
        self._radius_km = radius_km
        self._clock = clock

    async def current(self, latitude: float, longitude: float) -> WeatherReading:
        now = self._clock()
        try:
            # 1. Свежие данные рядом
            async with self._uow() as uow:
                observations = await uow.weather.list_unexpired(now)
            for observation in observations:
                if is_within_radius(latitude, longitude, observation.latitude, observation.longitude, self._radius_km):
                    return WeatherReading(condition=observation.condition)

            # 2. Запрос к провайдеру
            condition = await self._provider.get_condition(latitude, longitude)
        except Exception as e:
            logger.warning(f"Погода недоступна, используем clear: {e}")
            return WeatherReading(condition=WeatherCondition.CLEAR, from_fallback=True)

        # 3. Кэшируем (best-effort)
        try:
            async with self._uow() as uow:
                await uow.weather.add(WeatherObservation(
                    latitude=latitude,
                    longitude=longitude,
                    condition=condition,
                    recorded_at=now,
                    expires_at=now + self._ttl,
                ))
                await uow.commit()
        except Exception as e:
            logger.warning(f"Не удалось сохранить погоду в кэш: {e}")

        return WeatherReading(condition=condition)
