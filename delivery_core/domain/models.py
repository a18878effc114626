from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


def local_now() -> datetime:
    """Текущее локальное время сервера (aware)"""
    return datetime.now().astimezone()


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    PICKED_UP = "picked_up"
    DELIVERING = "delivering"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class ActorRole(str, Enum):
    CUSTOMER = "customer"
    RESTAURANT = "restaurant"
    COURIER = "courier"
    ADMIN = "admin"


class VehicleType(str, Enum):
    MOTO = "moto"
    BICYCLE = "bicycle"
    CAR = "car"


class WeatherCondition(str, Enum):
    CLEAR = "clear"
    CLOUDY = "cloudy"
    LIGHT_RAIN = "light_rain"
    HEAVY_RAIN = "heavy_rain"
    STORM = "storm"
    FOG = "fog"
    WIND = "wind"
    EXTREME = "extreme"


class ZoneKind(str, Enum):
    CITY_CENTER = "city_center"
    SUBURB = "suburb"
    VILLAGE = "village"
    MOUNTAIN = "mountain"


class RuleType(str, Enum):
    TIME = "time"
    WEATHER = "weather"
    DEMAND = "demand"


class NotificationKind(str, Enum):
    NEW_ORDER = "new_order"
    ORDER_CONFIRMED = "order_confirmed"
    ORDER_READY = "order_ready"
    DRIVER_ASSIGNED = "driver_assigned"
    NEW_DELIVERY = "new_delivery"
    ORDER_PICKED_UP = "order_picked_up"
    ORDER_DELIVERED = "order_delivered"
    ORDER_CANCELLED = "order_cancelled"


class Actor(BaseModel):
    """Текущий пользователь: роль + id, резолвится один раз на границе"""
    id: str
    role: ActorRole


class Order(BaseModel):
    """Domain Entity — заказ"""
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
    delivery_latitude: Optional[float] = None
    delivery_longitude: Optional[float] = None
    distance_km: float
    delivery_zone_id: Optional[str] = None
    confirmation_code: str
    customer_notes: Optional[str] = None
    idempotency_key: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    confirmed_at: Optional[datetime] = None
    preparing_at: Optional[datetime] = None
    ready_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    delivering_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[ActorRole] = None
    cancellation_reason: Optional[str] = None

    def is_terminal(self) -> bool:
        """Бизнес-правило: из delivered и cancelled переходов нет"""
        return self.status in (OrderStatus.DELIVERED, OrderStatus.CANCELLED)

    def has_destination(self) -> bool:
        return self.delivery_latitude is not None and self.delivery_longitude is not None


class OrderItem(BaseModel):
    menu_item_id: str
    name: str
    quantity: int
    unit_price: float
    total_price: float


class StatusHistoryEntry(BaseModel):
    """Неизменяемая запись истории статусов"""
    order_id: str
    status: OrderStatus
    changed_by: ActorRole | str
    note: Optional[str] = None
    created_at: datetime


class Courier(BaseModel):
    """Domain Entity — livreur"""
    id: str
    full_name: str
    vehicle_type: VehicleType = VehicleType.MOTO
    current_latitude: Optional[float] = None
    current_longitude: Optional[float] = None
    is_active: bool = True
    is_online: bool = False
    is_available: bool = True
    is_verified: bool = False
    rating: float = 5.0
    total_deliveries: int = 0
    total_earnings: float = 0.0

    def can_be_dispatched(self) -> bool:
        """Бизнес-правило: диспетчер видит только активных, проверенных, онлайн и свободных"""
        return self.is_active and self.is_verified and self.is_online and self.is_available

    def has_location(self) -> bool:
        return self.current_latitude is not None and self.current_longitude is not None


class MenuItem(BaseModel):
    """Value Object — блюдо из каталога"""
    id: str
    name: str
    price: float
    is_available: bool = True


class Restaurant(BaseModel):
    """Value Object — ресторан из каталога"""
    id: str
    name: str
    is_open: bool = True
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    menu_items: list[MenuItem] = Field(default_factory=list)

    def find_item(self, item_id: str) -> Optional[MenuItem]:
        return next((item for item in self.menu_items if item.id == item_id), None)


class DeliveryZone(BaseModel):
    id: str
    name: str
    kind: ZoneKind = ZoneKind.CITY_CENTER
    multiplier: float = 1.0
    # [[lat, lon], ...]
    polygon: list[list[float]] = Field(default_factory=list)
    is_active: bool = True


class PricingRule(BaseModel):
    id: str
    name: str
    rule_type: RuleType
    condition_operator: Optional[str] = None
    condition_value: int | float | str | list[int] | None = None
    multiplier: float = 1.0
    priority: int = 0
    is_active: bool = True


class PricingConfig(BaseModel):
    base_fee: float = 100
    price_per_km: float = 30
    min_price: float = 100
    max_price: float = 1500
    # Итог округляется вверх до кратного rounding_step (10 DA)
    rounding_step: float = 10

    @classmethod
    def from_values(cls, values: dict[str, float]) -> "PricingConfig":
        known = {key: value for key, value in values.items() if key in cls.model_fields}
        return cls(**known)


class Multipliers(BaseModel):
    zone: float = 1.0
    time: float = 1.0
    weather: float = 1.0
    demand: float = 1.0
    vehicle: float = 1.0

    def product(self) -> float:
        return self.zone * self.time * self.weather * self.demand * self.vehicle


class Bonuses(BaseModel):
    night_safety: float = 0
    equipment: float = 0

    def total(self) -> float:
        return self.night_safety + self.equipment


class DemandSnapshot(BaseModel):
    zone_id: Optional[str] = None
    available_couriers: int
    pending_orders: int
    demand_ratio: float


class DemandSample(BaseModel):
    id: str
    zone_id: Optional[str] = None
    pending_orders: int
    available_couriers: int
    demand_ratio: float
    hour_of_day: int
    day_of_week: int
    recorded_at: datetime


class WeatherReading(BaseModel):
    condition: WeatherCondition
    from_fallback: bool = False


class WeatherObservation(BaseModel):
    latitude: float
    longitude: float
    condition: WeatherCondition
    recorded_at: datetime
    expires_at: datetime


class PricingResult(BaseModel):
    final_price: float
    base_price: float
    multipliers: Multipliers = Field(default_factory=Multipliers)
    bonuses: Bonuses = Field(default_factory=Bonuses)
    breakdown: str
    warnings: list[str] = Field(default_factory=list)
    degraded: bool = False
    zone_id: Optional[str] = None
    calculation_id: Optional[str] = None


class PricingCalculation(BaseModel):
    """Запись расчета для аналитики, после создания не меняется"""
    id: str
    order_id: Optional[str] = None
    courier_id: Optional[str] = None
    distance_km: float
    base_price: float
    final_price: float
    multipliers: Multipliers
    bonuses: Bonuses
    weather_condition: WeatherCondition
    vehicle_type: VehicleType
    zone_id: Optional[str] = None
    available_couriers: int
    pending_orders: int
    breakdown: str
    warnings: list[str] = Field(default_factory=list)
    created_at: datetime
