"""
Жизненный цикл заказа: таблица переходов, права ролей и правила отмены.

Все допустимые ходы собраны здесь в виде литеральных таблиц, чтобы полный
набор правил проверялся в одном месте.
"""
from delivery_core.domain.models import OrderStatus, ActorRole
from delivery_core.domain.exceptions import (
    InvalidTransitionError, ForbiddenError, NonCancellableError, AlreadyCancelledError
)

S = OrderStatus
R = ActorRole

# Разрешенные переходы (строгое бизнес-правило)
VALID_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    S.PENDING: frozenset({S.CONFIRMED, S.CANCELLED}),
    S.CONFIRMED: frozenset({S.PREPARING, S.CANCELLED}),
    S.PREPARING: frozenset({S.READY, S.CANCELLED}),
    S.READY: frozenset({S.PICKED_UP}),
    S.PICKED_UP: frozenset({S.DELIVERING, S.DELIVERED}),
    S.DELIVERING: frozenset({S.DELIVERED}),
    S.DELIVERED: frozenset(),
    S.CANCELLED: frozenset(),
}

# Какие роли могут выполнить конкретный переход
ROLE_PERMISSIONS: dict[tuple[OrderStatus, OrderStatus], frozenset[ActorRole]] = {
    (S.PENDING, S.CONFIRMED): frozenset({R.COURIER}),
    (S.PENDING, S.CANCELLED): frozenset({R.CUSTOMER, R.RESTAURANT}),
    (S.CONFIRMED, S.PREPARING): frozenset({R.RESTAURANT}),
    (S.CONFIRMED, S.CANCELLED): frozenset({R.CUSTOMER, R.RESTAURANT}),
    (S.PREPARING, S.READY): frozenset({R.RESTAURANT}),
    (S.PREPARING, S.CANCELLED): frozenset({R.RESTAURANT}),
    (S.READY, S.PICKED_UP): frozenset({R.COURIER}),
    (S.PICKED_UP, S.DELIVERING): frozenset({R.COURIER}),
    (S.PICKED_UP, S.DELIVERED): frozenset({R.COURIER}),
    (S.DELIVERING, S.DELIVERED): frozenset({R.COURIER}),
}

# Статусы, в которых отмена запрещена без исключений
NON_CANCELLABLE_STATUSES = frozenset({S.PICKED_UP, S.DELIVERING, S.DELIVERED})

# Кто может отменить заказ в текущем статусе
CANCELLATION_RULES: dict[OrderStatus, frozenset[ActorRole]] = {
    S.PENDING: frozenset({R.CUSTOMER, R.RESTAURANT}),
    S.CONFIRMED: frozenset({R.CUSTOMER, R.RESTAURANT}),
    S.PREPARING: frozenset({R.RESTAURANT}),
    S.READY: frozenset(),
}

# Поле времени, которое проставляется при входе в статус
TIMESTAMP_FIELDS: dict[OrderStatus, str] = {
    S.CONFIRMED: "confirmed_at",
    S.PREPARING: "preparing_at",
    S.READY: "ready_at",
    S.PICKED_UP: "picked_up_at",
    S.DELIVERING: "delivering_at",
    S.DELIVERED: "delivered_at",
    S.CANCELLED: "cancelled_at",
}

# Статусы, в которых заказ удерживает курьера
ACTIVE_STATUSES = frozenset({S.CONFIRMED, S.PREPARING, S.READY, S.PICKED_UP, S.DELIVERING})

CODE_REQUIRED_TRANSITIONS = frozenset({(S.PICKED_UP, S.DELIVERED), (S.DELIVERING, S.DELIVERED)})


def is_courier_acceptance(current: OrderStatus, requested: OrderStatus) -> bool:
    return current == S.PENDING and requested == S.CONFIRMED


def ensure_transition(current: OrderStatus, requested: OrderStatus) -> None:
    if requested not in VALID_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(current.value, requested.value)


def ensure_role(current: OrderStatus, requested: OrderStatus, role: ActorRole) -> None:
    allowed = ROLE_PERMISSIONS.get((current, requested), frozenset())
    if role not in allowed:
        raise ForbiddenError(
            f"Роль {role.value} не может выполнить переход {current.value} -> {requested.value}"
        )


def ensure_can_cancel(current: OrderStatus, role: ActorRole) -> None:
    """Проверки отмены в порядке приоритета: необратимость, повтор, роль"""
    if current in NON_CANCELLABLE_STATUSES:
        raise NonCancellableError(current.value)
    if current == S.CANCELLED:
        raise AlreadyCancelledError("Заказ уже отменен")
    if role not in CANCELLATION_RULES.get(current, frozenset()):
        raise ForbiddenError(f"Роль {role.value} не может отменить заказ в статусе {current.value}")
