import uuid
from enum import Enum
from typing import Optional, List
from datetime import datetime, timezone
from sqlalchemy import select, insert, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from delivery_core.domain.models import (
    Order, OrderItem, OrderStatus, StatusHistoryEntry, Courier, VehicleType, DeliveryZone, ZoneKind,
    PricingRule, RuleType, PricingCalculation, Multipliers, Bonuses, WeatherCondition, DemandSample,
    WeatherObservation, ActorRole
)
from delivery_core.infrastructure.db_schema import (
    orders_tbl, order_items_tbl, order_status_history_tbl, couriers_tbl, delivery_zones_tbl,
    pricing_config_tbl, pricing_rules_tbl, pricing_calculations_tbl, demand_samples_tbl,
    weather_observations_tbl, outbox_events_tbl
)
from delivery_core.application.interfaces import (
    OrderRepository, StatusHistoryRepository, CourierRepository, PricingRepository,
    DemandRepository, WeatherRepository, OutboxRepository
)


def _plain(values: dict, enum_columns: tuple = ()) -> dict:
    """Enum -> строка для String-колонок; Enum-колонки получают член перечисления"""
    return {
        key: value.value if isinstance(value, Enum) and key not in enum_columns else value
        for key, value in values.items()
    }


class SQLAlchemyOrderRepository(OrderRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        result = await self._session.execute(
            select(orders_tbl).where(orders_tbl.c.id == order_id)
        )
        row = result.fetchone()
        return self._to_domain(row) if row else None

    async def get_by_idempotency_key(self, key: str) -> Optional[Order]:
        result = await self._session.execute(
            select(orders_tbl).where(orders_tbl.c.idempotency_key == key)
        )
        row = result.fetchone()
        return self._to_domain(row) if row else None

    async def create(self, order: Order) -> None:
        values = _plain(order.model_dump(), enum_columns=("status",))
        await self._session.execute(insert(orders_tbl).values(**values))

    async def compare_and_set(
        self, order_id: str, expected_status: OrderStatus, values: dict, expect_unassigned: bool = False
    ) -> bool:
        stmt = (
            update(orders_tbl)
            .where(orders_tbl.c.id == order_id, orders_tbl.c.status == expected_status)
            .values(**_plain(values, enum_columns=("status",)))
        )
        if expect_unassigned:
            stmt = stmt.where(orders_tbl.c.courier_id.is_(None))
        result = await self._session.execute(stmt)
        # Победитель гонки определяется количеством обновленных строк
        return result.rowcount == 1

    async def add_items(self, order_id: str, items: List[OrderItem]) -> None:
        if not items:
            return
        await self._session.execute(
            insert(order_items_tbl),
            [{"order_id": order_id, **item.model_dump()} for item in items],
        )

    async def get_items(self, order_id: str) -> List[OrderItem]:
        result = await self._session.execute(
            select(order_items_tbl)
            .where(order_items_tbl.c.order_id == order_id)
            .order_by(order_items_tbl.c.id.asc())
        )
        return [
            OrderItem(
                menu_item_id=row.menu_item_id,
                name=row.name,
                quantity=row.quantity,
                unit_price=row.unit_price,
                total_price=row.total_price,
            )
            for row in result.fetchall()
        ]

    async def count_by_status(self, statuses: List[OrderStatus], zone_id: Optional[str] = None) -> int:
        stmt = select(func.count()).select_from(orders_tbl).where(orders_tbl.c.status.in_(statuses))
        if zone_id:
            stmt = stmt.where(orders_tbl.c.delivery_zone_id == zone_id)
        result = await self._session.execute(stmt)
        return result.scalar_one()

    def _to_domain(self, row) -> Order:
        """Трансформация DB → Domain"""
        data = dict(row._mapping)
        data["status"] = OrderStatus(row.status)
        data["cancelled_by"] = ActorRole(row.cancelled_by) if row.cancelled_by else None
        return Order(**data)


class SQLAlchemyStatusHistoryRepository(StatusHistoryRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, entry: StatusHistoryEntry) -> None:
        changed_by = entry.changed_by.value if isinstance(entry.changed_by, Enum) else entry.changed_by
        await self._session.execute(
            insert(order_status_history_tbl).values(
                order_id=entry.order_id,
                status=entry.status,
                changed_by=changed_by,
                note=entry.note,
                created_at=entry.created_at,
            )
        )

    async def list_for_order(self, order_id: str) -> List[StatusHistoryEntry]:
        result = await self._session.execute(
            select(order_status_history_tbl)
            .where(order_status_history_tbl.c.order_id == order_id)
            .order_by(order_status_history_tbl.c.id.asc())
        )
        return [
            StatusHistoryEntry(
                order_id=row.order_id,
                status=OrderStatus(row.status),
                changed_by=row.changed_by,
                note=row.note,
                created_at=row.created_at,
            )
            for row in result.fetchall()
        ]


class SQLAlchemyCourierRepository(CourierRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    def _dispatchable(self):
        return (
            couriers_tbl.c.is_available.is_(True),
            couriers_tbl.c.is_online.is_(True),
            couriers_tbl.c.is_verified.is_(True),
            couriers_tbl.c.is_active.is_(True),
        )

    async def get_by_id(self, courier_id: str) -> Optional[Courier]:
        result = await self._session.execute(
            select(couriers_tbl).where(couriers_tbl.c.id == courier_id)
        )
        row = result.fetchone()
        return self._to_domain(row) if row else None

    async def find_available(self) -> List[Courier]:
        result = await self._session.execute(
            select(couriers_tbl)
            .where(*self._dispatchable())
            .order_by(couriers_tbl.c.rating.desc(), couriers_tbl.c.id.asc())
        )
        return [self._to_domain(row) for row in result.fetchall()]

    async def count_available(self) -> int:
        """Для расчета спроса: онлайн и свободен, проверка и активность не учитываются"""
        result = await self._session.execute(
            select(func.count()).select_from(couriers_tbl).where(
                couriers_tbl.c.is_online.is_(True),
                couriers_tbl.c.is_available.is_(True),
            )
        )
        return result.scalar_one()

    async def try_reserve(self, courier_id: str) -> bool:
        result = await self._session.execute(
            update(couriers_tbl)
            .where(couriers_tbl.c.id == courier_id, *self._dispatchable())
            .values(is_available=False)
        )
        return result.rowcount == 1

    async def release(self, courier_id: str) -> bool:
        result = await self._session.execute(
            update(couriers_tbl)
            .where(couriers_tbl.c.id == courier_id, couriers_tbl.c.is_available.is_(False))
            .values(is_available=True)
        )
        return result.rowcount == 1

    async def record_delivery(self, courier_id: str, earnings: float) -> None:
        await self._session.execute(
            update(couriers_tbl)
            .where(couriers_tbl.c.id == courier_id)
            .values(
                total_deliveries=couriers_tbl.c.total_deliveries + 1,
                total_earnings=couriers_tbl.c.total_earnings + earnings,
            )
        )

    async def update_presence(
        self, courier_id: str, is_online: Optional[bool], latitude: Optional[float], longitude: Optional[float]
    ) -> None:
        values = {}
        if is_online is not None:
            values["is_online"] = is_online
        if latitude is not None and longitude is not None:
            values["current_latitude"] = latitude
            values["current_longitude"] = longitude
        if not values:
            return
        await self._session.execute(
            update(couriers_tbl).where(couriers_tbl.c.id == courier_id).values(**values)
        )

    def _to_domain(self, row) -> Courier:
        return Courier(
            id=row.id,
            full_name=row.full_name,
            vehicle_type=VehicleType(row.vehicle_type),
            current_latitude=row.current_latitude,
            current_longitude=row.current_longitude,
            is_active=row.is_active,
            is_online=row.is_online,
            is_available=row.is_available,
            is_verified=row.is_verified,
            rating=row.rating,
            total_deliveries=row.total_deliveries,
            total_earnings=row.total_earnings,
        )


class SQLAlchemyPricingRepository(PricingRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_config_values(self) -> dict[str, float]:
        result = await self._session.execute(select(pricing_config_tbl))
        return {row.name: row.value for row in result.fetchall()}

    async def upsert_config_value(self, name: str, value: float, description: Optional[str] = None) -> None:
        result = await self._session.execute(
            update(pricing_config_tbl)
            .where(pricing_config_tbl.c.name == name)
            .values(value=value, updated_at=datetime.now(timezone.utc))
        )
        if result.rowcount == 0:
            await self._session.execute(
                insert(pricing_config_tbl).values(name=name, value=value, description=description)
            )

    async def list_zones(self, active_only: bool = True) -> List[DeliveryZone]:
        stmt = select(delivery_zones_tbl).order_by(delivery_zones_tbl.c.id.asc())
        if active_only:
            stmt = stmt.where(delivery_zones_tbl.c.is_active.is_(True))
        result = await self._session.execute(stmt)
        return [
            DeliveryZone(
                id=row.id,
                name=row.name,
                kind=ZoneKind(row.kind),
                multiplier=row.multiplier,
                polygon=row.polygon,
                is_active=row.is_active,
            )
            for row in result.fetchall()
        ]

    async def list_rules(self, active_only: bool = True) -> List[PricingRule]:
        stmt = select(pricing_rules_tbl).order_by(pricing_rules_tbl.c.priority.desc())
        if active_only:
            stmt = stmt.where(pricing_rules_tbl.c.is_active.is_(True))
        result = await self._session.execute(stmt)
        return [
            PricingRule(
                id=row.id,
                name=row.name,
                rule_type=RuleType(row.rule_type),
                condition_operator=row.condition_operator,
                condition_value=row.condition_value,
                multiplier=row.multiplier,
                priority=row.priority,
                is_active=row.is_active,
            )
            for row in result.fetchall()
        ]

    async def add_calculation(self, calculation: PricingCalculation) -> None:
        values = _plain(calculation.model_dump())
        await self._session.execute(insert(pricing_calculations_tbl).values(**values))

    async def list_calculations(self, start: datetime, end: datetime) -> List[PricingCalculation]:
        result = await self._session.execute(
            select(pricing_calculations_tbl)
            .where(
                pricing_calculations_tbl.c.created_at >= start,
                pricing_calculations_tbl.c.created_at <= end,
            )
            .order_by(pricing_calculations_tbl.c.created_at.asc())
        )
        return [self._calculation_to_domain(row) for row in result.fetchall()]

    def _calculation_to_domain(self, row) -> PricingCalculation:
        data = dict(row._mapping)
        data["multipliers"] = Multipliers(**row.multipliers)
        data["bonuses"] = Bonuses(**row.bonuses)
        data["weather_condition"] = WeatherCondition(row.weather_condition)
        data["vehicle_type"] = VehicleType(row.vehicle_type)
        return PricingCalculation(**data)


class SQLAlchemyDemandRepository(DemandRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def add_sample(self, sample: DemandSample) -> None:
        await self._session.execute(insert(demand_samples_tbl).values(**sample.model_dump()))

    async def list_samples(
        self, since: datetime, zone_id: Optional[str] = None,
        hour_of_day: Optional[int] = None, day_of_week: Optional[int] = None
    ) -> List[DemandSample]:
        stmt = select(demand_samples_tbl).where(demand_samples_tbl.c.recorded_at >= since)
        if zone_id is not None:
            stmt = stmt.where(demand_samples_tbl.c.zone_id == zone_id)
        if hour_of_day is not None:
            stmt = stmt.where(demand_samples_tbl.c.hour_of_day == hour_of_day)
        if day_of_week is not None:
            stmt = stmt.where(demand_samples_tbl.c.day_of_week == day_of_week)
        result = await self._session.execute(stmt.order_by(demand_samples_tbl.c.recorded_at.asc()))
        return [DemandSample(**dict(row._mapping)) for row in result.fetchall()]


class SQLAlchemyWeatherRepository(WeatherRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def list_unexpired(self, now: datetime) -> List[WeatherObservation]:
        result = await self._session.execute(
            select(weather_observations_tbl)
            .where(weather_observations_tbl.c.expires_at > now)
            .order_by(weather_observations_tbl.c.recorded_at.desc())
        )
        return [
            WeatherObservation(
                latitude=row.latitude,
                longitude=row.longitude,
                condition=WeatherCondition(row.condition),
                recorded_at=row.recorded_at,
                expires_at=row.expires_at,
            )
            for row in result.fetchall()
        ]

    async def add(self, observation: WeatherObservation) -> None:
        await self._session.execute(
            insert(weather_observations_tbl).values(**observation.model_dump())
        )


class SQLAlchemyOutboxRepository(OutboxRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, event_type: str, event_data: dict, order_id: str) -> str:
        event_id = str(uuid.uuid4())
        stmt = insert(outbox_events_tbl).values(
            id=event_id,
            event_type=event_type,
            event_data=event_data,  # SQLAlchemy JSON column сериализует автоматически
            order_id=order_id,
            status="pending",
            created_at=datetime.now(timezone.utc),
        )
        await self._session.execute(stmt)
        return event_id

    async def get_pending(self, limit: int = 10) -> List[dict]:
        result = await self._session.execute(
            select(outbox_events_tbl)
            .where(outbox_events_tbl.c.status == "pending")
            .order_by(outbox_events_tbl.c.created_at.asc())
            .limit(limit)
        )
        rows = result.fetchall()

        return [
            {
                "id": row.id,
                "event_type": row.event_type,
                "event_data": row.event_data,
                "order_id": row.order_id
            }
            for row in rows
        ]

    async def mark_as_published(self, event_id: str) -> None:
        stmt = (
            update(outbox_events_tbl)
            .where(outbox_events_tbl.c.id == event_id)
            .values(status="published")
        )
        await self._session.execute(stmt)

    async def mark_as_failed(self, event_id: str) -> None:
        stmt = (
            update(outbox_events_tbl)
            .where(outbox_events_tbl.c.id == event_id)
            .values(status="failed")
        )
        await self._session.execute(stmt)
