from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, List

from delivery_core.domain.models import (
    Order, OrderItem, OrderStatus, StatusHistoryEntry, Courier, DeliveryZone, PricingRule,
    PricingCalculation, DemandSample, WeatherObservation, Restaurant, Actor, WeatherCondition,
    NotificationKind, ActorRole
)


class OrderRepository(ABC):
    @abstractmethod
    async def get_by_id(self, order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_by_idempotency_key(self, key: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def create(self, order: Order) -> None:
        pass

    @abstractmethod
    async def compare_and_set(
        self, order_id: str, expected_status: OrderStatus, values: dict, expect_unassigned: bool = False
    ) -> bool:
        """Условный UPDATE: применяется, только если статус не изменился (и курьер не назначен)"""
        pass

    @abstractmethod
    async def add_items(self, order_id: str, items: List[OrderItem]) -> None:
        pass

    @abstractmethod
    async def get_items(self, order_id: str) -> List[OrderItem]:
        pass

    @abstractmethod
    async def count_by_status(self, statuses: List[OrderStatus], zone_id: Optional[str] = None) -> int:
        pass


class StatusHistoryRepository(ABC):
    @abstractmethod
    async def add(self, entry: StatusHistoryEntry) -> None:
        pass

    @abstractmethod
    async def list_for_order(self, order_id: str) -> List[StatusHistoryEntry]:
        pass


class CourierRepository(ABC):
    @abstractmethod
    async def get_by_id(self, courier_id: str) -> Optional[Courier]:
        pass

    @abstractmethod
    async def find_available(self) -> List[Courier]:
        pass

    @abstractmethod
    async def count_available(self) -> int:
        pass

    @abstractmethod
    async def try_reserve(self, courier_id: str) -> bool:
        """Атомарно: is_available true -> false, только для онлайн и проверенных"""
        pass

    @abstractmethod
    async def release(self, courier_id: str) -> bool:
        """Атомарно: is_available false -> true"""
        pass

    @abstractmethod
    async def record_delivery(self, courier_id: str, earnings: float) -> None:
        pass

    @abstractmethod
    async def update_presence(
        self, courier_id: str, is_online: Optional[bool], latitude: Optional[float], longitude: Optional[float]
    ) -> None:
        pass


class PricingRepository(ABC):
    @abstractmethod
    async def get_config_values(self) -> dict[str, float]:
        pass

    @abstractmethod
    async def upsert_config_value(self, name: str, value: float, description: Optional[str] = None) -> None:
        pass

    @abstractmethod
    async def list_zones(self, active_only: bool = True) -> List[DeliveryZone]:
        pass

    @abstractmethod
    async def list_rules(self, active_only: bool = True) -> List[PricingRule]:
        pass

    @abstractmethod
    async def add_calculation(self, calculation: PricingCalculation) -> None:
        pass

    @abstractmethod
    async def list_calculations(self, start: datetime, end: datetime) -> List[PricingCalculation]:
        pass


class DemandRepository(ABC):
    @abstractmethod
    async def add_sample(self, sample: DemandSample) -> None:
        pass

    @abstractmethod
    async def list_samples(
        self, since: datetime, zone_id: Optional[str] = None,
        hour_of_day: Optional[int] = None, day_of_week: Optional[int] = None
    ) -> List[DemandSample]:
        pass


class WeatherRepository(ABC):
    @abstractmethod
    async def list_unexpired(self, now: datetime) -> List[WeatherObservation]:
        pass

    @abstractmethod
    async def add(self, observation: WeatherObservation) -> None:
        pass


class OutboxRepository(ABC):
    @abstractmethod
    async def create(self, event_type: str, event_data: dict, order_id: str) -> str:
        pass

    @abstractmethod
    async def get_pending(self, limit: int = 10) -> List[dict]:
        pass

    @abstractmethod
    async def mark_as_published(self, event_id: str) -> None:
        pass

    @abstractmethod
    async def mark_as_failed(self, event_id: str) -> None:
        pass


class UnitOfWork(ABC):
    @property
    @abstractmethod
    def orders(self) -> OrderRepository:
        pass

    @property
    @abstractmethod
    def history(self) -> StatusHistoryRepository:
        pass

    @property
    @abstractmethod
    def couriers(self) -> CourierRepository:
        pass

    @property
    @abstractmethod
    def pricing(self) -> PricingRepository:
        pass

    @property
    @abstractmethod
    def demand(self) -> DemandRepository:
        pass

    @property
    @abstractmethod
    def weather(self) -> WeatherRepository:
        pass

    @property
    @abstractmethod
    def outbox(self) -> OutboxRepository:
        pass

    @abstractmethod
    async def __call__(self):
        pass

    @abstractmethod
    async def commit(self):
        pass

    @abstractmethod
    async def rollback(self):
        pass


class CatalogService(ABC):
    @abstractmethod
    async def get_restaurant(self, restaurant_id: str) -> Optional[Restaurant]:
        pass


class WeatherProvider(ABC):
    @abstractmethod
    async def get_condition(self, latitude: float, longitude: float) -> WeatherCondition:
        pass


class IdentityService(ABC):
    @abstractmethod
    async def resolve(self, token: str) -> Optional[Actor]:
        pass


class NotificationsService(ABC):
    @abstractmethod
    async def notify(
        self, recipient_role: ActorRole, recipient_id: str, kind: NotificationKind, payload: dict
    ) -> bool:
        pass


class KafkaProducer(ABC):
    @abstractmethod
    async def publish(self, event_type: str, key: str, payload: dict) -> bool:
        pass
