from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status

from delivery_core.database import AsyncSessionLocal
from delivery_core.presentation.schemas import (
    CreateOrderRequest, ChangeStatusRequest, CancelOrderRequest, OrderResponse, AssignCourierResponse,
    CourierPresenceRequest, CourierResponse, CalculatePriceRequest, PricingResponse, UpdateConfigRequest,
    ErrorResponse
)
from delivery_core.application.create_order import CreateOrderUseCase, CreateOrderDTO, OrderLineDTO
from delivery_core.application.get_order import GetOrderUseCase
from delivery_core.application.change_status import ChangeOrderStatusUseCase, ChangeStatusDTO
from delivery_core.application.cancel_order import CancelOrderUseCase, CancelOrderDTO
from delivery_core.application.assign_courier import AssignCourierUseCase
from delivery_core.application.courier_presence import UpdateCourierPresenceUseCase, CourierPresenceDTO
from delivery_core.application.calculate_price import CalculatePriceUseCase, CalculatePriceDTO
from delivery_core.application.pricing_admin import (
    GetPricingSettingsUseCase, UpdatePricingConfigUseCase, GetPricingAnalyticsUseCase
)
from delivery_core.application.demand import CurrentDemandUseCase, DemandAnalyticsUseCase
from delivery_core.application.weather import WeatherService
from delivery_core.domain.models import Actor, ActorRole
from delivery_core.domain.exceptions import (
    DomainException, NotFoundError, InvalidTransitionError, NonCancellableError, AlreadyCancelledError,
    InvalidConfirmationCodeError, RestaurantClosedError, MenuItemUnavailableError, ForbiddenError,
    AlreadyAssignedError, CourierUnavailableError, CatalogServiceError, IdentityServiceError,
    InvalidPricingConfigError
)
from delivery_core.infrastructure.unit_of_work import UnitOfWork
from delivery_core.infrastructure.http_clients import HTTPCatalogClient, HTTPIdentityClient, HTTPWeatherClient
from delivery_core.config import settings

router = APIRouter()

ERROR_STATUS = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (AlreadyAssignedError, status.HTTP_409_CONFLICT),
    (CourierUnavailableError, status.HTTP_409_CONFLICT),
    (InvalidTransitionError, status.HTTP_400_BAD_REQUEST),
    (NonCancellableError, status.HTTP_400_BAD_REQUEST),
    (AlreadyCancelledError, status.HTTP_400_BAD_REQUEST),
    (InvalidConfirmationCodeError, status.HTTP_400_BAD_REQUEST),
    (RestaurantClosedError, status.HTTP_400_BAD_REQUEST),
    (MenuItemUnavailableError, status.HTTP_400_BAD_REQUEST),
    (InvalidPricingConfigError, status.HTTP_400_BAD_REQUEST),
    (CatalogServiceError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (IdentityServiceError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def to_http_exception(error: DomainException) -> HTTPException:
    for error_cls, status_code in ERROR_STATUS:
        if isinstance(error, error_cls):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))


ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


# Фабрики для создания use cases
def get_unit_of_work() -> UnitOfWork:
    return UnitOfWork(AsyncSessionLocal)


def get_catalog_service():
    return HTTPCatalogClient(settings.CATALOG_BASE_URL, settings.API_TOKEN)


def get_identity_service():
    return HTTPIdentityClient(settings.IDENTITY_BASE_URL, settings.API_TOKEN)


def get_weather_provider():
    return HTTPWeatherClient(settings.WEATHER_BASE_URL, settings.WEATHER_API_KEY)


async def get_current_actor(
    authorization: Optional[str] = Header(default=None),
    identity=Depends(get_identity_service),
) -> Actor:
    """Actor из заголовка Authorization: Bearer <token>"""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Требуется авторизация")
    try:
        actor = await identity.resolve(authorization[7:].strip())
    except IdentityServiceError as e:
        raise to_http_exception(e)
    if not actor:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Недействительный токен")
    return actor


def get_demand_use_case(uow=Depends(get_unit_of_work)):
    return CurrentDemandUseCase(uow)


def get_demand_analytics_use_case(uow=Depends(get_unit_of_work)):
    return DemandAnalyticsUseCase(uow)


def get_calculate_price_use_case(
    uow=Depends(get_unit_of_work),
    weather_provider=Depends(get_weather_provider),
):
    weather = WeatherService(
        uow,
        weather_provider,
        ttl_seconds=settings.WEATHER_CACHE_TTL_SECONDS,
        radius_km=settings.WEATHER_CACHE_RADIUS_KM,
    )
    return CalculatePriceUseCase(uow, weather, CurrentDemandUseCase(uow))


def get_create_order_use_case(
    uow=Depends(get_unit_of_work),
    catalog=Depends(get_catalog_service),
    calculate_price=Depends(get_calculate_price_use_case),
):
    return CreateOrderUseCase(uow, catalog, calculate_price, settings.DEFAULT_DELIVERY_DISTANCE_KM)


def get_get_order_use_case(uow=Depends(get_unit_of_work)):
    return GetOrderUseCase(uow)


def get_change_status_use_case(uow=Depends(get_unit_of_work)):
    return ChangeOrderStatusUseCase(uow)


def get_cancel_order_use_case(uow=Depends(get_unit_of_work)):
    return CancelOrderUseCase(uow)


def get_assign_courier_use_case(uow=Depends(get_unit_of_work)):
    return AssignCourierUseCase(uow, radius_km=settings.DISPATCH_RADIUS_KM)


def get_courier_presence_use_case(uow=Depends(get_unit_of_work)):
    return UpdateCourierPresenceUseCase(uow)


def get_pricing_settings_use_case(uow=Depends(get_unit_of_work)):
    return GetPricingSettingsUseCase(uow)


def get_update_pricing_config_use_case(uow=Depends(get_unit_of_work)):
    return UpdatePricingConfigUseCase(uow)


def get_pricing_analytics_use_case(uow=Depends(get_unit_of_work)):
    return GetPricingAnalyticsUseCase(uow)


# Заказы

@router.post(
    "/orders",
    response_model=OrderResponse,
    responses=ERROR_RESPONSES | {503: {"model": ErrorResponse}},
    status_code=status.HTTP_201_CREATED
)
async def create_order(
    request: CreateOrderRequest,
    actor: Actor = Depends(get_current_actor),
    use_case: CreateOrderUseCase = Depends(get_create_order_use_case)
):
    """Создать новый заказ"""
    if actor.role != ActorRole.CUSTOMER:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Заказ может создать только клиент")
    try:
        dto = CreateOrderDTO(
            customer_id=actor.id,
            restaurant_id=request.restaurant_id,
            items=[OrderLineDTO(**line.model_dump()) for line in request.items],
            delivery_address=request.delivery_address,
            delivery_latitude=request.delivery_latitude,
            delivery_longitude=request.delivery_longitude,
            customer_notes=request.customer_notes,
            idempotency_key=request.idempotency_key
        )
        order = await use_case(dto)
        return OrderResponse.from_domain(order, show_code=True)
    except DomainException as e:
        raise to_http_exception(e)


@router.get("/orders/{order_id}", response_model=OrderResponse, responses=ERROR_RESPONSES)
async def get_order(
    order_id: str,
    actor: Actor = Depends(get_current_actor),
    use_case: GetOrderUseCase = Depends(get_get_order_use_case)
):
    """Получить заказ по ID вместе с позициями и историей"""
    try:
        details = await use_case(order_id, actor)
    except DomainException as e:
        raise to_http_exception(e)
    return OrderResponse.from_domain(
        details.order, details.items, details.history, show_code=actor.role == ActorRole.CUSTOMER
    )


@router.post("/orders/{order_id}/status", response_model=OrderResponse, responses=ERROR_RESPONSES)
async def change_order_status(
    order_id: str,
    request: ChangeStatusRequest,
    actor: Actor = Depends(get_current_actor),
    use_case: ChangeOrderStatusUseCase = Depends(get_change_status_use_case)
):
    """Сменить статус заказа"""
    try:
        order = await use_case(ChangeStatusDTO(
            order_id=order_id,
            actor=actor,
            new_status=request.status,
            note=request.note,
            confirmation_code=request.confirmation_code
        ))
        return OrderResponse.from_domain(order)
    except DomainException as e:
        raise to_http_exception(e)


@router.post("/orders/{order_id}/cancel", response_model=OrderResponse, responses=ERROR_RESPONSES)
async def cancel_order(
    order_id: str,
    request: CancelOrderRequest,
    actor: Actor = Depends(get_current_actor),
    use_case: CancelOrderUseCase = Depends(get_cancel_order_use_case)
):
    """Отменить заказ (до передачи курьеру)"""
    try:
        order = await use_case(CancelOrderDTO(
            order_id=order_id,
            actor=actor,
            reason=request.reason,
            details=request.details
        ))
        return OrderResponse.from_domain(order)
    except DomainException as e:
        raise to_http_exception(e)


@router.post("/orders/{order_id}/assign", response_model=AssignCourierResponse, responses=ERROR_RESPONSES)
async def assign_courier(
    order_id: str,
    actor: Actor = Depends(get_current_actor),
    use_case: AssignCourierUseCase = Depends(get_assign_courier_use_case)
):
    """Назначить ближайшего свободного курьера"""
    try:
        courier = await use_case(order_id, actor)
    except DomainException as e:
        raise to_http_exception(e)
    if not courier:
        return AssignCourierResponse(assigned=False, message="Нет свободных курьеров поблизости")
    return AssignCourierResponse(assigned=True, courier_id=courier.id, message="Курьер назначен")


# Курьеры

@router.put("/couriers/me/presence", response_model=CourierResponse, responses=ERROR_RESPONSES)
async def update_courier_presence(
    request: CourierPresenceRequest,
    actor: Actor = Depends(get_current_actor),
    use_case: UpdateCourierPresenceUseCase = Depends(get_courier_presence_use_case)
):
    """Курьер выходит на линию / уходит с линии, обновляет координаты"""
    if actor.role != ActorRole.COURIER:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Только для курьеров")
    try:
        courier = await use_case(CourierPresenceDTO(courier_id=actor.id, **request.model_dump()))
        return CourierResponse.from_domain(courier)
    except DomainException as e:
        raise to_http_exception(e)


# Цены

@router.post("/pricing/calculate", response_model=PricingResponse)
async def calculate_price(
    request: CalculatePriceRequest,
    use_case: CalculatePriceUseCase = Depends(get_calculate_price_use_case)
):
    """Рассчитать цену доставки"""
    result = await use_case(CalculatePriceDTO(**request.model_dump()))
    return PricingResponse(**result.model_dump())


@router.get("/pricing/config")
async def get_pricing_config(use_case: GetPricingSettingsUseCase = Depends(get_pricing_settings_use_case)):
    config = await use_case.config()
    return config.model_dump()


@router.put("/pricing/config/{name}", responses=ERROR_RESPONSES)
async def update_pricing_config(
    name: str,
    request: UpdateConfigRequest,
    actor: Actor = Depends(get_current_actor),
    use_case: UpdatePricingConfigUseCase = Depends(get_update_pricing_config_use_case)
):
    """Изменить параметр цены (только администратор)"""
    try:
        config = await use_case(actor, name, request.value, request.description)
        return config.model_dump()
    except DomainException as e:
        raise to_http_exception(e)


@router.get("/pricing/zones")
async def get_pricing_zones(use_case: GetPricingSettingsUseCase = Depends(get_pricing_settings_use_case)):
    zones = await use_case.zones()
    return [zone.model_dump() for zone in zones]


@router.get("/pricing/rules")
async def get_pricing_rules(use_case: GetPricingSettingsUseCase = Depends(get_pricing_settings_use_case)):
    rules = await use_case.rules()
    return [rule.model_dump() for rule in rules]


@router.get("/pricing/analytics", responses=ERROR_RESPONSES)
async def get_pricing_analytics(
    start_date: Optional[datetime] = Query(default=None),
    end_date: Optional[datetime] = Query(default=None),
    actor: Actor = Depends(get_current_actor),
    use_case: GetPricingAnalyticsUseCase = Depends(get_pricing_analytics_use_case)
):
    """Сводка по расчетам цен за период (по умолчанию 30 дней)"""
    if actor.role != ActorRole.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Только для администратора")
    analytics = await use_case(start_date, end_date)
    return analytics.model_dump()


# Спрос

@router.get("/demand/current")
async def get_current_demand(
    zone_id: Optional[str] = Query(default=None),
    use_case: CurrentDemandUseCase = Depends(get_demand_use_case)
):
    snapshot = await use_case(zone_id)
    return snapshot.model_dump()


@router.get("/demand/trends")
async def get_demand_trends(use_case: DemandAnalyticsUseCase = Depends(get_demand_analytics_use_case)):
    return await use_case.trends()


@router.get("/demand/peak-hours")
async def get_peak_hours(
    limit: int = Query(default=10, ge=1, le=100),
    use_case: DemandAnalyticsUseCase = Depends(get_demand_analytics_use_case)
):
    return await use_case.peak_hours(limit)


@router.get("/demand/zones")
async def get_zone_demand(use_case: DemandAnalyticsUseCase = Depends(get_demand_analytics_use_case)):
    return await use_case.zone_stats()


@router.get("/demand/predict")
async def predict_demand(
    hour: int = Query(ge=0, le=23),
    day_of_week: int = Query(ge=1, le=7),
    zone_id: Optional[str] = Query(default=None),
    use_case: DemandAnalyticsUseCase = Depends(get_demand_analytics_use_case)
):
    predicted = await use_case.predict(hour, day_of_week, zone_id)
    return {"hour": hour, "day_of_week": day_of_week, "zone_id": zone_id, "predicted_demand_ratio": predicted}
