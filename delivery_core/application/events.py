from typing import Optional

from delivery_core.domain.models import Order, OrderStatus

ORDER_CREATED = "order.created"
ORDER_STATUS_CHANGED = "order.status_changed"
ORDER_CANCELLED = "order.cancelled"
ORDER_COURIER_ASSIGNED = "order.courier_assigned"


def order_event_data(
    order: Order,
    old_status: Optional[OrderStatus],
    new_status: OrderStatus,
    changed_by: str,
    note: Optional[str] = None,
) -> dict:
    """Данные события для outbox (JSON)"""
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "old_status": old_status.value if old_status else None,
        "new_status": new_status.value,
        "changed_by": changed_by,
        "customer_id": order.customer_id,
        "restaurant_id": order.restaurant_id,
        "courier_id": order.courier_id,
        "note": note,
    }
