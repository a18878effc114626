from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional

from delivery_core.domain.models import (
    ActorRole, OrderStatus, VehicleType, WeatherCondition, Multipliers, Bonuses
)


class OrderLineRequest(BaseModel):
    menu_item_id: str
    quantity: int = Field(gt=0)


class CreateOrderRequest(BaseModel):
    restaurant_id: str
    items: List[OrderLineRequest] = Field(min_length=1)
    delivery_address: str
    delivery_latitude: float = Field(ge=-90, le=90)
    delivery_longitude: float = Field(ge=-180, le=180)
    customer_notes: Optional[str] = None
    idempotency_key: Optional[str] = None


class ChangeStatusRequest(BaseModel):
    status: OrderStatus
    note: Optional[str] = None
    confirmation_code: Optional[str] = None


class CancelOrderRequest(BaseModel):
    reason: str = Field(min_length=1)
    details: Optional[str] = None


class OrderItemResponse(BaseModel):
    menu_item_id: str
    name: str
    quantity: int
    unit_price: float
    total_price: float


class StatusHistoryResponse(BaseModel):
    status: OrderStatus
    changed_by: str
    note: Optional[str] = None
    created_at: datetime


class OrderResponse(BaseModel):
    id: str
    order_number: str
    customer_id: str
    restaurant_id: str
    courier_id: Optional[str] = None
    status: OrderStatus
    subtotal: float
    delivery_fee: float
    total: float
    delivery_address: str
    distance_km: float
    customer_notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    cancelled_by: Optional[ActorRole] = None
    cancellation_reason: Optional[str] = None
    # Код видит только клиент: он диктует его курьеру при передаче
    confirmation_code: Optional[str] = None
    items: List[OrderItemResponse] = Field(default_factory=list)
    history: List[StatusHistoryResponse] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, order, items=None, history=None, show_code: bool = False):
        return cls(
            id=order.id,
            order_number=order.order_number,
            customer_id=order.customer_id,
            restaurant_id=order.restaurant_id,
            courier_id=order.courier_id,
            status=order.status,
            subtotal=order.subtotal,
            delivery_fee=order.delivery_fee,
            total=order.total,
            delivery_address=order.delivery_address,
            distance_km=order.distance_km,
            customer_notes=order.customer_notes,
            created_at=order.created_at,
            updated_at=order.updated_at,
            cancelled_by=order.cancelled_by,
            cancellation_reason=order.cancellation_reason,
            confirmation_code=order.confirmation_code if show_code else None,
            items=[OrderItemResponse(**item.model_dump()) for item in items or []],
            history=[
                StatusHistoryResponse(
                    status=entry.status,
                    changed_by=str(getattr(entry.changed_by, "value", entry.changed_by)),
                    note=entry.note,
                    created_at=entry.created_at,
                )
                for entry in history or []
            ],
        )


class AssignCourierResponse(BaseModel):
    assigned: bool
    courier_id: Optional[str] = None
    message: str


class CourierPresenceRequest(BaseModel):
    is_online: Optional[bool] = None
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)


class CourierResponse(BaseModel):
    id: str
    full_name: str
    vehicle_type: VehicleType
    is_online: bool
    is_available: bool
    current_latitude: Optional[float] = None
    current_longitude: Optional[float] = None

    @classmethod
    def from_domain(cls, courier):
        return cls(
            id=courier.id,
            full_name=courier.full_name,
            vehicle_type=courier.vehicle_type,
            is_online=courier.is_online,
            is_available=courier.is_available,
            current_latitude=courier.current_latitude,
            current_longitude=courier.current_longitude,
        )


class CalculatePriceRequest(BaseModel):
    distance_km: float = Field(ge=0)
    delivery_latitude: float = Field(ge=-90, le=90)
    delivery_longitude: float = Field(ge=-180, le=180)
    restaurant_latitude: Optional[float] = None
    restaurant_longitude: Optional[float] = None
    vehicle_type: VehicleType = VehicleType.MOTO
    has_rain_gear: bool = False
    weather_override: Optional[WeatherCondition] = None
    order_id: Optional[str] = None
    courier_id: Optional[str] = None


class PricingResponse(BaseModel):
    final_price: float
    base_price: float
    multipliers: Multipliers
    bonuses: Bonuses
    breakdown: str
    warnings: List[str]
    degraded: bool
    calculation_id: Optional[str] = None


class UpdateConfigRequest(BaseModel):
    value: float = Field(ge=0)
    description: Optional[str] = None


class ErrorResponse(BaseModel):
    detail: str
