import asyncio

import pytest

from delivery_core.application.change_status import ChangeOrderStatusUseCase, ChangeStatusDTO
from delivery_core.application.events import ORDER_CANCELLED, ORDER_STATUS_CHANGED
from delivery_core.domain.models import ActorRole, OrderStatus
from delivery_core.domain.exceptions import (
    AlreadyAssignedError, AlreadyCancelledError, CourierUnavailableError, ForbiddenError,
    InvalidConfirmationCodeError, InvalidTransitionError, NonCancellableError, OrderNotFoundError
)

from conftest import COURIER, CUSTOMER, RESTAURANT, actor, fixed_clock, make_courier, make_order


@pytest.fixture
def change_status(uow):
    return ChangeOrderStatusUseCase(uow, clock=fixed_clock)


def dto(order_id="order-1", who=COURIER, status=OrderStatus.CONFIRMED, **extra):
    return ChangeStatusDTO(order_id=order_id, actor=who, new_status=status, **extra)


async def test_courier_accepts_pending_order(store, change_status):
    store.orders["order-1"] = make_order()
    store.couriers["courier-1"] = make_courier()

    order = await change_status(dto())

    assert order.status == OrderStatus.CONFIRMED
    assert order.courier_id == "courier-1"
    assert store.orders["order-1"].confirmed_at == fixed_clock()
    assert store.couriers["courier-1"].is_available is False
    assert [e.status for e in store.history] == [OrderStatus.CONFIRMED]
    assert store.outbox[0]["event_type"] == ORDER_STATUS_CHANGED
    assert store.outbox[0]["event_data"]["old_status"] == "pending"


async def test_concurrent_acceptance_has_one_winner(store, change_status):
    store.orders["order-1"] = make_order()
    store.couriers["courier-1"] = make_courier()
    store.couriers["courier-2"] = make_courier(id="courier-2")

    results = await asyncio.gather(
        change_status(dto(who=actor(ActorRole.COURIER, "courier-1"))),
        change_status(dto(who=actor(ActorRole.COURIER, "courier-2"))),
        return_exceptions=True,
    )

    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, Exception)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], (AlreadyAssignedError, InvalidTransitionError))

    winner_id = winners[0].courier_id
    loser_id = "courier-2" if winner_id == "courier-1" else "courier-1"
    assert store.orders["order-1"].courier_id == winner_id
    assert store.couriers[winner_id].is_available is False
    # Резерв проигравшего откатился вместе с транзакцией
    assert store.couriers[loser_id].is_available is True
    assert len(store.history) == 1
    assert len(store.outbox) == 1


async def test_accepting_assigned_order_is_already_assigned(store, change_status):
    store.orders["order-1"] = make_order(courier_id="courier-2")
    store.couriers["courier-1"] = make_courier()

    with pytest.raises(AlreadyAssignedError):
        await change_status(dto())


async def test_busy_courier_cannot_accept(store, change_status):
    store.orders["order-1"] = make_order()
    store.couriers["courier-1"] = make_courier(is_available=False)

    with pytest.raises(CourierUnavailableError):
        await change_status(dto())
    assert store.orders["order-1"].status == OrderStatus.PENDING


async def test_unverified_courier_is_forbidden(store, change_status):
    store.orders["order-1"] = make_order()
    store.couriers["courier-1"] = make_courier(is_verified=False)

    with pytest.raises(ForbiddenError):
        await change_status(dto())


async def test_unknown_order(change_status):
    with pytest.raises(OrderNotFoundError):
        await change_status(dto(order_id="missing"))


async def test_restaurant_of_another_order_is_forbidden(store, change_status):
    store.orders["order-1"] = make_order(status=OrderStatus.CONFIRMED, courier_id="courier-1")

    with pytest.raises(ForbiddenError):
        await change_status(dto(who=actor(ActorRole.RESTAURANT, "rest-9"), status=OrderStatus.PREPARING))


async def test_restaurant_advances_kitchen_steps(store, change_status):
    store.orders["order-1"] = make_order(status=OrderStatus.CONFIRMED, courier_id="courier-1")

    await change_status(dto(who=RESTAURANT, status=OrderStatus.PREPARING))
    order = await change_status(dto(who=RESTAURANT, status=OrderStatus.READY))

    assert order.status == OrderStatus.READY
    assert store.orders["order-1"].preparing_at == fixed_clock()
    assert store.orders["order-1"].ready_at == fixed_clock()


async def test_other_courier_cannot_pick_up(store, change_status):
    store.orders["order-1"] = make_order(status=OrderStatus.READY, courier_id="courier-1")
    store.couriers["courier-2"] = make_courier(id="courier-2")

    with pytest.raises(ForbiddenError):
        await change_status(dto(who=actor(ActorRole.COURIER, "courier-2"), status=OrderStatus.PICKED_UP))


async def test_skipping_steps_is_invalid(store, change_status):
    store.orders["order-1"] = make_order(status=OrderStatus.CONFIRMED, courier_id="courier-1")

    with pytest.raises(InvalidTransitionError):
        await change_status(dto(who=RESTAURANT, status=OrderStatus.READY))


async def test_wrong_code_keeps_order_picked_up(store, change_status):
    store.orders["order-1"] = make_order(status=OrderStatus.PICKED_UP, courier_id="courier-1")
    store.couriers["courier-1"] = make_courier(is_available=False)

    with pytest.raises(InvalidConfirmationCodeError):
        await change_status(dto(status=OrderStatus.DELIVERED, confirmation_code="ZZZZ"))

    assert store.orders["order-1"].status == OrderStatus.PICKED_UP
    assert store.couriers["courier-1"].is_available is False
    assert store.history == []
    assert store.outbox == []


async def test_missing_code_is_rejected(store, change_status):
    store.orders["order-1"] = make_order(status=OrderStatus.DELIVERING, courier_id="courier-1")
    store.couriers["courier-1"] = make_courier(is_available=False)

    with pytest.raises(InvalidConfirmationCodeError):
        await change_status(dto(status=OrderStatus.DELIVERED))


async def test_delivery_with_lowercase_code(store, change_status):
    store.orders["order-1"] = make_order(status=OrderStatus.PICKED_UP, courier_id="courier-1")
    store.couriers["courier-1"] = make_courier(is_available=False)

    order = await change_status(dto(status=OrderStatus.DELIVERED, confirmation_code="k7q2"))

    assert order.status == OrderStatus.DELIVERED
    courier = store.couriers["courier-1"]
    assert courier.is_available is True
    assert courier.total_deliveries == 1
    assert courier.total_earnings == 250.0
    assert store.orders["order-1"].delivered_at == fixed_clock()


async def test_cancel_through_status_change_releases_courier(store, change_status):
    store.orders["order-1"] = make_order(status=OrderStatus.CONFIRMED, courier_id="courier-1")
    store.couriers["courier-1"] = make_courier(is_available=False)

    order = await change_status(dto(who=CUSTOMER, status=OrderStatus.CANCELLED, note="trop long"))

    assert order.status == OrderStatus.CANCELLED
    assert order.cancelled_by == ActorRole.CUSTOMER
    assert order.cancellation_reason == "trop long"
    assert store.couriers["courier-1"].is_available is True
    assert store.outbox[-1]["event_type"] == ORDER_CANCELLED


async def test_concurrent_cancel_and_advance_do_not_both_apply(store, change_status):
    store.orders["order-1"] = make_order(status=OrderStatus.CONFIRMED, courier_id="courier-1")

    results = await asyncio.gather(
        change_status(dto(who=RESTAURANT, status=OrderStatus.PREPARING)),
        change_status(dto(who=CUSTOMER, status=OrderStatus.CANCELLED)),
        return_exceptions=True,
    )

    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], InvalidTransitionError)
    assert store.orders["order-1"].status in (OrderStatus.PREPARING, OrderStatus.CANCELLED)
    assert len(store.history) == 1


@pytest.mark.parametrize("current", [OrderStatus.PICKED_UP, OrderStatus.DELIVERING, OrderStatus.DELIVERED])
@pytest.mark.parametrize("who", [CUSTOMER, RESTAURANT, COURIER])
async def test_cancel_after_pickup_is_non_cancellable(store, change_status, current, who):
    store.orders["order-1"] = make_order(status=current, courier_id="courier-1")

    with pytest.raises(NonCancellableError):
        await change_status(dto(who=who, status=OrderStatus.CANCELLED))

    assert store.orders["order-1"].status == current
    assert store.history == []


async def test_cancelling_twice_through_status_change(store, change_status):
    store.orders["order-1"] = make_order(status=OrderStatus.CANCELLED)

    with pytest.raises(AlreadyCancelledError):
        await change_status(dto(who=CUSTOMER, status=OrderStatus.CANCELLED))
