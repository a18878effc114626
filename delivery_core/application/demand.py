import logging
import uuid
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Optional, List

from delivery_core.domain.models import DemandSnapshot, DemandSample, OrderStatus, local_now

logger = logging.getLogger(__name__)

# Нет свободных курьеров -> "бесконечный" спрос
NO_COURIERS_DEMAND_RATIO = 999.0

PENDING_STATUSES = [OrderStatus.PENDING, OrderStatus.CONFIRMED]


def demand_ratio(pending_orders: int, available_couriers: int) -> float:
    if available_couriers <= 0:
        return NO_COURIERS_DEMAND_RATIO
    return pending_orders / available_couriers


class CurrentDemandUseCase:
    def __init__(self, unit_of_work, clock: Callable[[], datetime] = local_now):
        self._uow = unit_of_work
        self._clock = clock

    async def __call__(self, zone_id: Optional[str] = None) -> DemandSnapshot:
        # Только чтение, без блокировок
        async with self._uow() as uow:
            # Курьеры не привязаны к зонам, поэтому их число считается по всему городу
            available = await uow.couriers.count_available()
            pending = await uow.orders.count_by_status(PENDING_STATUSES, zone_id=zone_id)

        snapshot = DemandSnapshot(
            zone_id=zone_id,
            available_couriers=available,
            pending_orders=pending,
            demand_ratio=demand_ratio(pending, available),
        )
        await self._save_sample(snapshot)
        return snapshot

    async def _save_sample(self, snapshot: DemandSnapshot) -> None:
        now = self._clock()
        try:
            async with self._uow() as uow:
                await uow.demand.add_sample(DemandSample(
                    id=str(uuid.uuid4()),
                    zone_id=snapshot.zone_id,
                    pending_orders=snapshot.pending_orders,
                    available_couriers=snapshot.available_couriers,
                    demand_ratio=snapshot.demand_ratio,
                    hour_of_day=now.hour,
                    day_of_week=now.isoweekday(),
                    recorded_at=now,
                ))
                await uow.commit()
        except Exception as e:
            logger.warning(f"Не удалось сохранить срез спроса: {e}")


def _aggregate(samples: List[DemandSample], key: str) -> List[dict]:
    grouped: dict[int, list[float]] = defaultdict(list)
    for sample in samples:
        grouped[getattr(sample, key)].append(sample.demand_ratio)
    return [
        {
            key: group,
            "average_demand_ratio": sum(ratios) / len(ratios),
            "data_points": len(ratios),
        }
        for group, ratios in sorted(grouped.items())
    ]


class DemandAnalyticsUseCase:
    """Агрегаты по сохраненным срезам спроса, без изменений данных"""

    def __init__(self, unit_of_work, clock: Callable[[], datetime] = local_now):
        self._uow = unit_of_work
        self._clock = clock

    async def _samples(self, days: float, **filters) -> List[DemandSample]:
        since = self._clock() - timedelta(days=days)
        async with self._uow() as uow:
            return await uow.demand.list_samples(since, **filters)

    async def trends(self) -> dict:
        hourly = await self._samples(7)
        weekly = await self._samples(30)
        return {
            "hourly_trends": _aggregate(hourly, "hour_of_day"),
            "weekly_trends": _aggregate(weekly, "day_of_week"),
        }

    async def peak_hours(self, limit: int = 10) -> List[dict]:
        samples = await self._samples(7)
        top = sorted(samples, key=lambda s: s.demand_ratio, reverse=True)[:limit]
        return [{"hour_of_day": s.hour_of_day, "demand_ratio": s.demand_ratio} for s in top]

    async def zone_stats(self) -> List[dict]:
        samples = await self._samples(1)
        grouped: dict[Optional[str], list[float]] = defaultdict(list)
        for sample in samples:
            grouped[sample.zone_id].append(sample.demand_ratio)
        stats = [
            {
                "zone_id": zone_id,
                "average_demand": sum(ratios) / len(ratios),
                "data_points": len(ratios),
            }
            for zone_id, ratios in grouped.items()
        ]
        return sorted(stats, key=lambda s: s["average_demand"], reverse=True)

    async def predict(self, hour: int, day_of_week: int, zone_id: Optional[str] = None) -> float:
        """Средний спрос в тот же час и день недели за 30 дней"""
        filters = {"hour_of_day": hour, "day_of_week": day_of_week}
        if zone_id:
            filters["zone_id"] = zone_id
        samples = await self._samples(30, **filters)
        if not samples:
            return 1.0
        average = sum(s.demand_ratio for s in samples) / len(samples)
        return round(average, 2)
