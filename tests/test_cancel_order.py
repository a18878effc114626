import pytest

from delivery_core.application.cancel_order import CancelOrderUseCase, CancelOrderDTO
from delivery_core.application.events import ORDER_CANCELLED
from delivery_core.domain.models import ActorRole, OrderStatus
from delivery_core.domain.exceptions import (
    AlreadyCancelledError, ForbiddenError, NonCancellableError, OrderNotFoundError
)

from conftest import ADMIN, COURIER, CUSTOMER, RESTAURANT, actor, fixed_clock, make_courier, make_order


@pytest.fixture
def cancel(uow):
    return CancelOrderUseCase(uow, clock=fixed_clock)


async def test_customer_changed_mind(store, cancel):
    store.orders["order-1"] = make_order()

    order = await cancel(CancelOrderDTO(order_id="order-1", actor=CUSTOMER, reason="changed mind"))

    assert order.status == OrderStatus.CANCELLED
    assert order.cancelled_by == ActorRole.CUSTOMER
    assert order.courier_id is None
    assert order.cancellation_reason == "changed mind"
    stored = store.orders["order-1"]
    assert stored.status == OrderStatus.CANCELLED
    assert stored.cancelled_at == fixed_clock()
    assert store.history[-1].status == OrderStatus.CANCELLED
    assert store.outbox[-1]["event_type"] == ORDER_CANCELLED
    assert store.outbox[-1]["event_data"]["changed_by"] == "customer"


async def test_details_take_precedence_over_reason(store, cancel):
    store.orders["order-1"] = make_order()

    order = await cancel(CancelOrderDTO(
        order_id="order-1", actor=CUSTOMER, reason="other", details="adresse erronée"
    ))

    assert order.cancellation_reason == "adresse erronée"


async def test_restaurant_cancels_preparing_order_and_frees_courier(store, cancel):
    store.orders["order-1"] = make_order(status=OrderStatus.PREPARING, courier_id="courier-1")
    store.couriers["courier-1"] = make_courier(is_available=False)

    order = await cancel(CancelOrderDTO(order_id="order-1", actor=RESTAURANT, reason="rupture de stock"))

    assert order.cancelled_by == ActorRole.RESTAURANT
    assert store.couriers["courier-1"].is_available is True


async def test_customer_cannot_cancel_preparing(store, cancel):
    store.orders["order-1"] = make_order(status=OrderStatus.PREPARING)

    with pytest.raises(ForbiddenError):
        await cancel(CancelOrderDTO(order_id="order-1", actor=CUSTOMER, reason="late"))
    assert store.orders["order-1"].status == OrderStatus.PREPARING


async def test_nobody_cancels_ready(store, cancel):
    store.orders["order-1"] = make_order(status=OrderStatus.READY, courier_id="courier-1")

    for who in (CUSTOMER, RESTAURANT, COURIER, ADMIN):
        with pytest.raises(ForbiddenError):
            await cancel(CancelOrderDTO(order_id="order-1", actor=who, reason="x"))


@pytest.mark.parametrize("status", [OrderStatus.PICKED_UP, OrderStatus.DELIVERING, OrderStatus.DELIVERED])
@pytest.mark.parametrize("who", [CUSTOMER, RESTAURANT, COURIER, ADMIN])
async def test_non_cancellable_after_pickup(store, cancel, status, who):
    store.orders["order-1"] = make_order(status=status, courier_id="courier-1")

    with pytest.raises(NonCancellableError):
        await cancel(CancelOrderDTO(order_id="order-1", actor=who, reason="x"))
    assert store.orders["order-1"].status == status


async def test_cancel_twice(store, cancel):
    store.orders["order-1"] = make_order()
    await cancel(CancelOrderDTO(order_id="order-1", actor=CUSTOMER, reason="changed mind"))

    with pytest.raises(AlreadyCancelledError):
        await cancel(CancelOrderDTO(order_id="order-1", actor=CUSTOMER, reason="again"))


async def test_foreign_customer_is_forbidden(store, cancel):
    store.orders["order-1"] = make_order()

    with pytest.raises(ForbiddenError):
        await cancel(CancelOrderDTO(order_id="order-1", actor=actor(ActorRole.CUSTOMER, "cust-2"), reason="x"))


async def test_unknown_order(cancel):
    with pytest.raises(OrderNotFoundError):
        await cancel(CancelOrderDTO(order_id="nope", actor=CUSTOMER, reason="x"))
