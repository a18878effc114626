import logging
import uuid
from datetime import datetime
from typing import Callable, List, Optional
from pydantic import BaseModel, Field

from delivery_core.domain.codes import generate_confirmation_code, generate_order_number
from delivery_core.domain.geo import haversine_km
from delivery_core.domain.models import (
    Order, OrderItem, OrderStatus, Restaurant, StatusHistoryEntry, ActorRole, local_now
)
from delivery_core.domain.exceptions import (
    RestaurantNotFoundError, RestaurantClosedError, MenuItemNotFoundError, MenuItemUnavailableError
)
from delivery_core.application.interfaces import CatalogService
from delivery_core.application.calculate_price import CalculatePriceDTO, CalculatePriceUseCase
from delivery_core.application.events import ORDER_CREATED, order_event_data

logger = logging.getLogger(__name__)


class OrderLineDTO(BaseModel):
    menu_item_id: str
    quantity: int = Field(gt=0)


class CreateOrderDTO(BaseModel):
    customer_id: str
    restaurant_id: str
    items: List[OrderLineDTO] = Field(min_length=1)
    delivery_address: str
    delivery_latitude: float
    delivery_longitude: float
    customer_notes: Optional[str] = None
    idempotency_key: Optional[str] = None


class CreateOrderUseCase:
    def __init__(
        self,
        unit_of_work,
        catalog_service: CatalogService,
        calculate_price: CalculatePriceUseCase,
        default_distance_km: float = 5.0,
        clock: Callable[[], datetime] = local_now,
    ):
        self._uow = unit_of_work
        self._catalog = catalog_service
        self._calculate_price = calculate_price
        self._default_distance_km = default_distance_km
        self._clock = clock

    async def __call__(self, order_data: CreateOrderDTO) -> Order:
        logger.info(f"Создание заказа для клиента {order_data.customer_id}, ресторан {order_data.restaurant_id}")

        # 1. Проверка идемпотентности
        if order_data.idempotency_key:
            async with self._uow() as uow:
                existing = await uow.orders.get_by_idempotency_key(order_data.idempotency_key)
            if existing:
                logger.info(f"Заказ уже существует: {existing.id}")
                return existing

        # 2. Проверка каталога: цены берутся только из каталога
        restaurant = await self._catalog.get_restaurant(order_data.restaurant_id)
        if not restaurant:
            raise RestaurantNotFoundError(f"Ресторан {order_data.restaurant_id} не найден")
        if not restaurant.is_open:
            raise RestaurantClosedError(f"Ресторан {restaurant.name} сейчас закрыт")
        items = self._build_items(restaurant, order_data.items)

        # 3. Расчет суммы и доставки
        subtotal = sum(item.total_price for item in items)
        distance = self._distance(restaurant, order_data)
        order_id = str(uuid.uuid4())
        price = await self._calculate_price(CalculatePriceDTO(
            distance_km=distance,
            delivery_latitude=order_data.delivery_latitude,
            delivery_longitude=order_data.delivery_longitude,
            restaurant_latitude=restaurant.latitude,
            restaurant_longitude=restaurant.longitude,
            order_id=order_id,
        ))

        # 4. Создание заказа
        now = self._clock()
        order = Order(
            id=order_id,
            order_number=generate_order_number(now),
            customer_id=order_data.customer_id,
            restaurant_id=order_data.restaurant_id,
            status=OrderStatus.PENDING,
            subtotal=subtotal,
            delivery_fee=price.final_price,
            total=subtotal + price.final_price,
            delivery_address=order_data.delivery_address,
            delivery_latitude=order_data.delivery_latitude,
            delivery_longitude=order_data.delivery_longitude,
            distance_km=distance,
            delivery_zone_id=price.zone_id,
            confirmation_code=generate_confirmation_code(),
            customer_notes=order_data.customer_notes,
            idempotency_key=order_data.idempotency_key,
            created_at=now,
            updated_at=now,
        )
        async with self._uow() as uow:
            await uow.orders.create(order)
            await uow.orders.add_items(order.id, items)
            await uow.history.add(StatusHistoryEntry(
                order_id=order.id,
                status=OrderStatus.PENDING,
                changed_by=ActorRole.CUSTOMER.value,
                created_at=now,
            ))
            await uow.outbox.create(
                event_type=ORDER_CREATED,
                event_data=order_event_data(order, None, OrderStatus.PENDING, ActorRole.CUSTOMER.value),
                order_id=order.id,
            )
            await uow.commit()

        logger.info(f"Заказ создан: {order.order_number} ({order.id}), итого {order.total} DA")
        return order

    def _build_items(self, restaurant: Restaurant, lines: List[OrderLineDTO]) -> List[OrderItem]:
        items = []
        for line in lines:
            menu_item = restaurant.find_item(line.menu_item_id)
            if not menu_item:
                raise MenuItemNotFoundError(f"Блюдо {line.menu_item_id} не найдено")
            if not menu_item.is_available:
                raise MenuItemUnavailableError(f"Блюдо {menu_item.name} недоступно")
            items.append(OrderItem(
                menu_item_id=menu_item.id,
                name=menu_item.name,
                quantity=line.quantity,
                unit_price=menu_item.price,
                total_price=menu_item.price * line.quantity,
            ))
        return items

    def _distance(self, restaurant: Restaurant, order_data: CreateOrderDTO) -> float:
        if restaurant.latitude is None or restaurant.longitude is None:
            return self._default_distance_km
        distance = haversine_km(
            restaurant.latitude, restaurant.longitude,
            order_data.delivery_latitude, order_data.delivery_longitude,
        )
        return round(distance, 2)
