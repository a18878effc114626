import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

import pytest

from delivery_core.domain.models import (
    Actor, ActorRole, Courier, MenuItem, Order, OrderStatus, Restaurant, VehicleType, WeatherCondition
)

FIXED_NOW = datetime(2026, 3, 10, 14, 0, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return FIXED_NOW


class InMemoryStore:
    """Общее состояние для всех фейковых UoW одного теста"""

    def __init__(self):
        self.orders: dict[str, Order] = {}
        self.items: dict[str, list] = {}
        self.history: list = []
        self.couriers: dict[str, Courier] = {}
        self.config: dict[str, float] = {}
        self.zones: list = []
        self.rules: list = []
        self.calculations: list = []
        self.samples: list = []
        self.observations: list = []
        self.outbox: list[dict] = []
        self.broken: set[str] = set()

    def check(self, operation: str) -> None:
        if operation in self.broken:
            raise RuntimeError(f"{operation} unavailable")


class _Repo:
    def __init__(self, store: InMemoryStore, journal: list):
        self._store = store
        self._journal = journal


class FakeOrderRepository(_Repo):
    async def get_by_id(self, order_id):
        self._store.check("orders.get_by_id")
        await asyncio.sleep(0)
        order = self._store.orders.get(order_id)
        return order.model_copy() if order else None

    async def get_by_idempotency_key(self, key):
        await asyncio.sleep(0)
        return next((o.model_copy() for o in self._store.orders.values() if o.idempotency_key == key), None)

    async def create(self, order):
        self._store.orders[order.id] = order.model_copy()
        self._journal.append(lambda: self._store.orders.pop(order.id, None))

    async def compare_and_set(self, order_id, expected_status, values, expect_unassigned=False):
        # Без await между проверкой и записью, как условный UPDATE
        current = self._store.orders.get(order_id)
        if current is None or current.status != expected_status:
            return False
        if expect_unassigned and current.courier_id is not None:
            return False
        previous = {key: getattr(current, key) for key in values}
        self._store.orders[order_id] = current.model_copy(update=values)

        def undo():
            self._store.orders[order_id] = self._store.orders[order_id].model_copy(update=previous)
        self._journal.append(undo)
        return True

    async def add_items(self, order_id, items):
        self._store.items[order_id] = list(items)
        self._journal.append(lambda: self._store.items.pop(order_id, None))

    async def get_items(self, order_id):
        return list(self._store.items.get(order_id, []))

    async def count_by_status(self, statuses, zone_id=None):
        self._store.check("orders.count_by_status")
        await asyncio.sleep(0)
        return sum(
            1 for o in self._store.orders.values()
            if o.status in statuses and (zone_id is None or o.delivery_zone_id == zone_id)
        )


class FakeHistoryRepository(_Repo):
    async def add(self, entry):
        self._store.history.append(entry)
        self._journal.append(lambda: self._store.history.remove(entry))

    async def list_for_order(self, order_id):
        return [entry for entry in self._store.history if entry.order_id == order_id]


class FakeCourierRepository(_Repo):
    def _set(self, courier_id, **values):
        current = self._store.couriers[courier_id]
        previous = {key: getattr(current, key) for key in values}
        self._store.couriers[courier_id] = current.model_copy(update=values)

        def undo():
            self._store.couriers[courier_id] = self._store.couriers[courier_id].model_copy(update=previous)
        self._journal.append(undo)

    async def get_by_id(self, courier_id):
        await asyncio.sleep(0)
        courier = self._store.couriers.get(courier_id)
        return courier.model_copy() if courier else None

    async def find_available(self):
        await asyncio.sleep(0)
        available = [c.model_copy() for c in self._store.couriers.values() if c.can_be_dispatched()]
        return sorted(available, key=lambda c: (-c.rating, c.id))

    async def count_available(self):
        self._store.check("couriers.count_available")
        await asyncio.sleep(0)
        return sum(1 for c in self._store.couriers.values() if c.is_online and c.is_available)

    async def try_reserve(self, courier_id):
        courier = self._store.couriers.get(courier_id)
        if courier is None or not courier.can_be_dispatched():
            return False
        self._set(courier_id, is_available=False)
        return True

    async def release(self, courier_id):
        courier = self._store.couriers.get(courier_id)
        if courier is None or courier.is_available:
            return False
        self._set(courier_id, is_available=True)
        return True

    async def record_delivery(self, courier_id, earnings):
        courier = self._store.couriers[courier_id]
        self._set(
            courier_id,
            total_deliveries=courier.total_deliveries + 1,
            total_earnings=courier.total_earnings + earnings,
        )

    async def update_presence(self, courier_id, is_online, latitude, longitude):
        values = {}
        if is_online is not None:
            values["is_online"] = is_online
        if latitude is not None and longitude is not None:
            values["current_latitude"] = latitude
            values["current_longitude"] = longitude
        if values:
            self._set(courier_id, **values)


class FakePricingRepository(_Repo):
    async def get_config_values(self):
        self._store.check("pricing.get_config_values")
        return dict(self._store.config)

    async def upsert_config_value(self, name, value, description=None):
        had, previous = name in self._store.config, self._store.config.get(name)
        self._store.config[name] = value

        def undo():
            if had:
                self._store.config[name] = previous
            else:
                self._store.config.pop(name, None)
        self._journal.append(undo)

    async def list_zones(self, active_only=True):
        self._store.check("pricing.list_zones")
        return [z for z in self._store.zones if z.is_active or not active_only]

    async def list_rules(self, active_only=True):
        self._store.check("pricing.list_rules")
        return [r for r in self._store.rules if r.is_active or not active_only]

    async def add_calculation(self, calculation):
        self._store.check("pricing.add_calculation")
        self._store.calculations.append(calculation)
        self._journal.append(lambda: self._store.calculations.remove(calculation))

    async def list_calculations(self, start, end):
        return [c for c in self._store.calculations if start <= c.created_at <= end]


class FakeDemandRepository(_Repo):
    async def add_sample(self, sample):
        self._store.check("demand.add_sample")
        self._store.samples.append(sample)
        self._journal.append(lambda: self._store.samples.remove(sample))

    async def list_samples(self, since, zone_id=None, hour_of_day=None, day_of_week=None):
        return [
            s for s in self._store.samples
            if s.recorded_at >= since
            and (zone_id is None or s.zone_id == zone_id)
            and (hour_of_day is None or s.hour_of_day == hour_of_day)
            and (day_of_week is None or s.day_of_week == day_of_week)
        ]


class FakeWeatherRepository(_Repo):
    async def list_unexpired(self, now):
        self._store.check("weather.list_unexpired")
        return [o for o in self._store.observations if o.expires_at > now]

    async def add(self, observation):
        self._store.check("weather.add")
        self._store.observations.append(observation)
        self._journal.append(lambda: self._store.observations.remove(observation))


class FakeOutboxRepository(_Repo):
    async def create(self, event_type, event_data, order_id):
        event = {
            "id": f"evt-{len(self._store.outbox) + 1}",
            "event_type": event_type,
            "event_data": event_data,
            "order_id": order_id,
            "status": "pending",
        }
        self._store.outbox.append(event)
        self._journal.append(lambda: self._store.outbox.remove(event))
        return event["id"]

    async def get_pending(self, limit=10):
        return [dict(e) for e in self._store.outbox if e["status"] == "pending"][:limit]

    def _mark(self, event_id, status):
        event = next(e for e in self._store.outbox if e["id"] == event_id)
        previous = event["status"]
        event["status"] = status
        self._journal.append(lambda: event.update(status=previous))

    async def mark_as_published(self, event_id):
        self._mark(event_id, "published")

    async def mark_as_failed(self, event_id):
        self._mark(event_id, "failed")


class _FakeUnitOfWorkImpl:
    def __init__(self, store: InMemoryStore):
        self.journal: list = []
        self.orders = FakeOrderRepository(store, self.journal)
        self.history = FakeHistoryRepository(store, self.journal)
        self.couriers = FakeCourierRepository(store, self.journal)
        self.pricing = FakePricingRepository(store, self.journal)
        self.demand = FakeDemandRepository(store, self.journal)
        self.weather = FakeWeatherRepository(store, self.journal)
        self.outbox = FakeOutboxRepository(store, self.journal)

    async def commit(self):
        self.journal.clear()

    async def rollback(self):
        while self.journal:
            self.journal.pop()()


class FakeUnitOfWork:
    """UoW поверх InMemoryStore: все незакоммиченное откатывается по журналу"""

    def __init__(self, store: InMemoryStore):
        self.store = store

    @asynccontextmanager
    async def __call__(self):
        uow = _FakeUnitOfWorkImpl(self.store)
        try:
            yield uow
        finally:
            await uow.rollback()


class FakeCatalog:
    def __init__(self, restaurants: Optional[List[Restaurant]] = None):
        self.restaurants = {r.id: r for r in restaurants or []}

    async def get_restaurant(self, restaurant_id):
        return self.restaurants.get(restaurant_id)


class FakeWeatherProvider:
    def __init__(self, condition: WeatherCondition = WeatherCondition.CLEAR, fail: bool = False):
        self.condition = condition
        self.fail = fail
        self.calls = 0

    async def get_condition(self, latitude, longitude):
        self.calls += 1
        if self.fail:
            raise RuntimeError("provider down")
        return self.condition


class FakeNotifications:
    def __init__(self, ok: bool = True):
        self.ok = ok
        self.sent: list = []

    async def notify(self, recipient_role, recipient_id, kind, payload):
        self.sent.append((recipient_role, recipient_id, kind))
        return self.ok


class FakeKafka:
    def __init__(self, ok: bool = True):
        self.ok = ok
        self.published: list = []

    async def publish(self, event_type, key, payload):
        if self.ok:
            self.published.append((event_type, key, payload))
        return self.ok


def make_order(**overrides) -> Order:
    data = dict(
        id="order-1",
        order_number="DZ-20260310-001",
        customer_id="cust-1",
        restaurant_id="rest-1",
        status=OrderStatus.PENDING,
        subtotal=1200.0,
        delivery_fee=250.0,
        total=1450.0,
        delivery_address="12 rue Didouche Mourad, Alger",
        delivery_latitude=36.7538,
        delivery_longitude=3.0588,
        distance_km=5.0,
        confirmation_code="K7Q2",
        created_at=FIXED_NOW,
        updated_at=FIXED_NOW,
    )
    data.update(overrides)
    return Order(**data)


def make_courier(**overrides) -> Courier:
    data = dict(
        id="courier-1",
        full_name="Karim Benali",
        vehicle_type=VehicleType.MOTO,
        current_latitude=36.7540,
        current_longitude=3.0590,
        is_active=True,
        is_online=True,
        is_available=True,
        is_verified=True,
    )
    data.update(overrides)
    return Courier(**data)


def make_restaurant(**overrides) -> Restaurant:
    data = dict(
        id="rest-1",
        name="Dar El Bahdja",
        is_open=True,
        latitude=36.7762,
        longitude=3.0585,
        menu_items=[
            MenuItem(id="couscous", name="Couscous royal", price=900),
            MenuItem(id="chorba", name="Chorba frik", price=300),
            MenuItem(id="bourek", name="Bourek", price=150, is_available=False),
        ],
    )
    data.update(overrides)
    return Restaurant(**data)


def actor(role: ActorRole, actor_id: str) -> Actor:
    return Actor(id=actor_id, role=role)


CUSTOMER = actor(ActorRole.CUSTOMER, "cust-1")
RESTAURANT = actor(ActorRole.RESTAURANT, "rest-1")
COURIER = actor(ActorRole.COURIER, "courier-1")
ADMIN = actor(ActorRole.ADMIN, "admin-1")


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def uow(store):
    return FakeUnitOfWork(store)
