import pytest

from delivery_core.application.courier_presence import CourierPresenceDTO, UpdateCourierPresenceUseCase
from delivery_core.application.get_order import GetOrderUseCase
from delivery_core.domain.models import ActorRole, OrderItem, OrderStatus, StatusHistoryEntry
from delivery_core.domain.exceptions import CourierNotFoundError, ForbiddenError, OrderNotFoundError

from conftest import ADMIN, COURIER, CUSTOMER, FIXED_NOW, actor, make_courier, make_order


async def test_order_with_items_and_history(store, uow):
    store.orders["order-1"] = make_order(status=OrderStatus.CONFIRMED, courier_id="courier-1")
    store.items["order-1"] = [
        OrderItem(menu_item_id="couscous", name="Couscous royal", quantity=1, unit_price=900, total_price=900)
    ]
    store.history = [
        StatusHistoryEntry(order_id="order-1", status=OrderStatus.PENDING, changed_by="customer", created_at=FIXED_NOW),
        StatusHistoryEntry(order_id="order-1", status=OrderStatus.CONFIRMED, changed_by="courier", created_at=FIXED_NOW),
    ]

    details = await GetOrderUseCase(uow)("order-1", CUSTOMER)

    assert details.order.id == "order-1"
    assert len(details.items) == 1
    assert [h.status for h in details.history] == [OrderStatus.PENDING, OrderStatus.CONFIRMED]


async def test_visibility(store, uow):
    store.orders["order-1"] = make_order(courier_id="courier-1")
    get_order = GetOrderUseCase(uow)

    await get_order("order-1", ADMIN)
    await get_order("order-1", COURIER)
    with pytest.raises(ForbiddenError):
        await get_order("order-1", actor(ActorRole.CUSTOMER, "cust-2"))
    with pytest.raises(ForbiddenError):
        await get_order("order-1", actor(ActorRole.COURIER, "courier-2"))


async def test_missing_order(uow):
    with pytest.raises(OrderNotFoundError):
        await GetOrderUseCase(uow)("missing")


async def test_courier_goes_online_with_location(store, uow):
    store.couriers["courier-1"] = make_courier(is_online=False, is_available=False)

    courier = await UpdateCourierPresenceUseCase(uow)(
        CourierPresenceDTO(courier_id="courier-1", is_online=True, latitude=36.70, longitude=3.05)
    )

    stored = store.couriers["courier-1"]
    assert courier.is_online is stored.is_online is True
    assert stored.current_latitude == 36.70
    # Занятость меняет только жизненный цикл заказа
    assert stored.is_available is False


async def test_partial_location_is_ignored(store, uow):
    store.couriers["courier-1"] = make_courier()

    await UpdateCourierPresenceUseCase(uow)(CourierPresenceDTO(courier_id="courier-1", latitude=1.0))

    assert store.couriers["courier-1"].current_latitude == 36.7540


async def test_unknown_courier(uow):
    with pytest.raises(CourierNotFoundError):
        await UpdateCourierPresenceUseCase(uow)(CourierPresenceDTO(courier_id="ghost", is_online=True))
