from sqlalchemy import (
    Table, Column, String, Integer, Float, Boolean, Enum, DateTime, JSON, MetaData, ForeignKey, Text
)
from sqlalchemy.sql import func

from delivery_core.domain.models import OrderStatus, VehicleType, WeatherCondition, ZoneKind, RuleType

metadata = MetaData()


def _values(enum_cls):
    return [member.value for member in enum_cls]


orders_tbl = Table(
    "orders",
    metadata,
    Column("id", String, primary_key=True),
    Column("order_number", String, unique=True, nullable=False),
    Column("customer_id", String, nullable=False, index=True),
    Column("restaurant_id", String, nullable=False, index=True),
    Column("courier_id", String, nullable=True, index=True),
    Column("status", Enum(OrderStatus, values_callable=_values, name="order_status"),
           nullable=False, default=OrderStatus.PENDING, index=True),
    Column("subtotal", Float, nullable=False),
    Column("delivery_fee", Float, nullable=False),
    Column("total", Float, nullable=False),
    Column("delivery_address", Text, nullable=False),
    Column("delivery_latitude", Float, nullable=True),
    Column("delivery_longitude", Float, nullable=True),
    Column("distance_km", Float, nullable=False),
    Column("delivery_zone_id", String, nullable=True, index=True),
    Column("confirmation_code", String(4), nullable=False),
    Column("customer_notes", Text, nullable=True),
    Column("idempotency_key", String, unique=True, index=True, nullable=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now(), onupdate=func.now()),
    Column("confirmed_at", DateTime(timezone=True), nullable=True),
    Column("preparing_at", DateTime(timezone=True), nullable=True),
    Column("ready_at", DateTime(timezone=True), nullable=True),
    Column("picked_up_at", DateTime(timezone=True), nullable=True),
    Column("delivering_at", DateTime(timezone=True), nullable=True),
    Column("delivered_at", DateTime(timezone=True), nullable=True),
    Column("cancelled_at", DateTime(timezone=True), nullable=True),
    Column("cancelled_by", String, nullable=True),
    Column("cancellation_reason", Text, nullable=True),
)


order_items_tbl = Table(
    "order_items",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("order_id", String, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("menu_item_id", String, nullable=False),
    Column("name", String, nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("unit_price", Float, nullable=False),
    Column("total_price", Float, nullable=False),
)


order_status_history_tbl = Table(
    "order_status_history",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("order_id", String, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("status", Enum(OrderStatus, values_callable=_values, name="order_status"), nullable=False),
    Column("changed_by", String, nullable=False),
    Column("note", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
)


couriers_tbl = Table(
    "couriers",
    metadata,
    Column("id", String, primary_key=True),
    Column("full_name", String, nullable=False),
    Column("vehicle_type", Enum(VehicleType, values_callable=_values, name="vehicle_type"),
           nullable=False, default=VehicleType.MOTO),
    Column("current_latitude", Float, nullable=True),
    Column("current_longitude", Float, nullable=True),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("is_online", Boolean, nullable=False, default=False),
    Column("is_available", Boolean, nullable=False, default=True),
    Column("is_verified", Boolean, nullable=False, default=False),
    Column("rating", Float, nullable=False, default=5.0),
    Column("total_deliveries", Integer, nullable=False, default=0),
    Column("total_earnings", Float, nullable=False, default=0),
    Column("updated_at", DateTime(timezone=True), server_default=func.now(), onupdate=func.now()),
)


delivery_zones_tbl = Table(
    "delivery_zones",
    metadata,
    Column("id", String, primary_key=True),
    Column("name", String, nullable=False),
    Column("kind", Enum(ZoneKind, values_callable=_values, name="zone_kind"),
           nullable=False, default=ZoneKind.CITY_CENTER),
    Column("multiplier", Float, nullable=False, default=1.0),
    # [[lat, lon], ...]
    Column("polygon", JSON, nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
)


pricing_config_tbl = Table(
    "pricing_config",
    metadata,
    Column("name", String, primary_key=True),
    Column("value", Float, nullable=False),
    Column("description", Text, nullable=True),
    Column("updated_at", DateTime(timezone=True), server_default=func.now(), onupdate=func.now()),
)


pricing_rules_tbl = Table(
    "pricing_rules",
    metadata,
    Column("id", String, primary_key=True),
    Column("name", String, nullable=False),
    Column("rule_type", Enum(RuleType, values_callable=_values, name="rule_type"), nullable=False),
    Column("condition_operator", String, nullable=True),
    Column("condition_value", JSON, nullable=True),
    Column("multiplier", Float, nullable=False, default=1.0),
    Column("priority", Integer, nullable=False, default=0),
    Column("is_active", Boolean, nullable=False, default=True),
)


pricing_calculations_tbl = Table(
    "pricing_calculations",
    metadata,
    Column("id", String, primary_key=True),
    Column("order_id", String, nullable=True, index=True),
    Column("courier_id", String, nullable=True),
    Column("distance_km", Float, nullable=False),
    Column("base_price", Float, nullable=False),
    Column("final_price", Float, nullable=False),
    Column("multipliers", JSON, nullable=False),
    Column("bonuses", JSON, nullable=False),
    Column("weather_condition", String, nullable=False),
    Column("vehicle_type", String, nullable=False),
    Column("zone_id", String, nullable=True),
    Column("available_couriers", Integer, nullable=False),
    Column("pending_orders", Integer, nullable=False),
    Column("breakdown", Text, nullable=False),
    Column("warnings", JSON, nullable=False),
    Column("created_at", DateTime(timezone=True), server_default=func.now(), index=True),
)


demand_samples_tbl = Table(
    "demand_samples",
    metadata,
    Column("id", String, primary_key=True),
    Column("zone_id", String, nullable=True, index=True),
    Column("pending_orders", Integer, nullable=False),
    Column("available_couriers", Integer, nullable=False),
    Column("demand_ratio", Float, nullable=False),
    Column("hour_of_day", Integer, nullable=False),
    Column("day_of_week", Integer, nullable=False),
    Column("recorded_at", DateTime(timezone=True), server_default=func.now(), index=True),
)


weather_observations_tbl = Table(
    "weather_observations",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("latitude", Float, nullable=False),
    Column("longitude", Float, nullable=False),
    Column("condition", Enum(WeatherCondition, values_callable=_values, name="weather_condition"), nullable=False),
    Column("recorded_at", DateTime(timezone=True), server_default=func.now()),
    Column("expires_at", DateTime(timezone=True), nullable=False, index=True),
)


outbox_events_tbl = Table(
    "outbox_events",
    metadata,
    Column("id", String, primary_key=True),
    Column("event_type", String, nullable=False),
    Column("event_data", JSON, nullable=False),
    Column("order_id", String, nullable=False),
    Column("status", String, default="pending"),
    Column("created_at", DateTime(timezone=True), server_default=func.now())
)
