import re

import pytest

from delivery_core.application.calculate_price import CalculatePriceUseCase
from delivery_core.application.create_order import CreateOrderUseCase, CreateOrderDTO, OrderLineDTO
from delivery_core.application.demand import CurrentDemandUseCase
from delivery_core.application.events import ORDER_CREATED
from delivery_core.application.weather import WeatherService
from delivery_core.domain.models import OrderStatus
from delivery_core.domain.exceptions import (
    MenuItemNotFoundError, MenuItemUnavailableError, RestaurantClosedError, RestaurantNotFoundError
)

from conftest import FakeCatalog, FakeWeatherProvider, fixed_clock, make_restaurant


@pytest.fixture
def catalog():
    return FakeCatalog([make_restaurant(), make_restaurant(id="rest-2", latitude=None, longitude=None)])


@pytest.fixture
def create_order(uow, catalog):
    calculate = CalculatePriceUseCase(
        uow,
        WeatherService(uow, FakeWeatherProvider(), clock=fixed_clock),
        CurrentDemandUseCase(uow, clock=fixed_clock),
        clock=fixed_clock,
    )
    return CreateOrderUseCase(uow, catalog, calculate, default_distance_km=5.0, clock=fixed_clock)


def order_dto(**overrides):
    data = dict(
        customer_id="cust-1",
        restaurant_id="rest-1",
        items=[OrderLineDTO(menu_item_id="couscous", quantity=2), OrderLineDTO(menu_item_id="chorba", quantity=1)],
        delivery_address="12 rue Didouche Mourad, Alger",
        delivery_latitude=36.7538,
        delivery_longitude=3.0588,
    )
    data.update(overrides)
    return CreateOrderDTO(**data)


async def test_creates_pending_order_with_catalog_prices(store, create_order):
    order = await create_order(order_dto())

    assert order.status == OrderStatus.PENDING
    assert order.subtotal == 2100
    # ~2.5 км от ресторана
    assert order.distance_km == pytest.approx(2.49, abs=0.02)
    assert order.delivery_fee == 180
    assert order.total == order.subtotal + order.delivery_fee
    assert re.fullmatch(r"DZ-20260310-\d{3}", order.order_number)
    assert re.fullmatch(r"[A-Z0-9]{4}", order.confirmation_code)
    assert order.courier_id is None

    assert store.orders[order.id] == order
    assert [item.total_price for item in store.items[order.id]] == [1800, 300]
    assert store.history[0].status == OrderStatus.PENDING
    assert store.outbox[0]["event_type"] == ORDER_CREATED
    assert store.calculations[0].order_id == order.id


async def test_idempotency_key_returns_existing_order(store, create_order):
    first = await create_order(order_dto(idempotency_key="key-1"))
    second = await create_order(order_dto(idempotency_key="key-1"))

    assert second.id == first.id
    assert len(store.orders) == 1


async def test_restaurant_without_coordinates_uses_default_distance(create_order):
    order = await create_order(order_dto(restaurant_id="rest-2"))

    assert order.distance_km == 5.0
    assert order.delivery_fee == 250


async def test_unknown_restaurant(create_order):
    with pytest.raises(RestaurantNotFoundError):
        await create_order(order_dto(restaurant_id="nope"))


async def test_closed_restaurant(catalog, create_order, store):
    catalog.restaurants["rest-1"] = make_restaurant(is_open=False)

    with pytest.raises(RestaurantClosedError):
        await create_order(order_dto())
    assert store.orders == {}


async def test_unavailable_item(create_order):
    with pytest.raises(MenuItemUnavailableError):
        await create_order(order_dto(items=[OrderLineDTO(menu_item_id="bourek", quantity=1)]))


async def test_unknown_item(create_order):
    with pytest.raises(MenuItemNotFoundError):
        await create_order(order_dto(items=[OrderLineDTO(menu_item_id="pizza", quantity=1)]))
