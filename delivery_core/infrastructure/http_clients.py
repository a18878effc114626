import httpx
import logging
from typing import Optional

from delivery_core.domain.models import Actor, ActorRole, NotificationKind, Restaurant, WeatherCondition
from delivery_core.domain.exceptions import CatalogServiceError, IdentityServiceError, WeatherServiceError

logger = logging.getLogger(__name__)

# Ветер сильнее этого (м/с) считаем отдельным погодным условием
STRONG_WIND_MS = 10.0


class HTTPCatalogClient:
    def __init__(self, base_url: str, api_token: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._base_url = base_url
        self._api_token = api_token
        self._transport = transport

    async def get_restaurant(self, restaurant_id: str) -> Optional[Restaurant]:
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.get(
                    f"{self._base_url}/api/catalog/restaurants/{restaurant_id}",
                    headers={"X-API-Key": self._api_token},
                    timeout=10.0
                )

                if response.status_code == 200:
                    return Restaurant(**response.json())
                elif response.status_code == 404:
                    return None
                else:
                    raise CatalogServiceError(f"Catalog service ошибка: {response.status_code}")

        except httpx.RequestError as e:
            logger.error(f"Catalog service ошибка подключения: {e}")
            raise CatalogServiceError(f"Catalog service не доступен: {str(e)}")


class HTTPIdentityClient:
    """Проверка токена: Bearer -> Actor(id, role)"""

    def __init__(self, base_url: str, api_token: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._base_url = base_url
        self._api_token = api_token
        self._transport = transport

    async def resolve(self, token: str) -> Optional[Actor]:
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.get(
                    f"{self._base_url}/api/identity/me",
                    headers={
                        "X-API-Key": self._api_token,
                        "Authorization": f"Bearer {token}",
                    },
                    timeout=5.0
                )

                if response.status_code == 200:
                    data = response.json()
                    return Actor(id=data["id"], role=ActorRole(data["role"]))
                elif response.status_code in (401, 403, 404):
                    return None
                else:
                    raise IdentityServiceError(f"Identity service ошибка: {response.status_code}")

        except httpx.RequestError as e:
            logger.error(f"Identity service ошибка подключения: {e}")
            raise IdentityServiceError(f"Identity service не доступен: {str(e)}")


class HTTPNotificationsClient:
    def __init__(self, base_url: str, api_token: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._base_url = base_url
        self._api_token = api_token
        self._transport = transport

    async def notify(
        self, recipient_role: ActorRole, recipient_id: str, kind: NotificationKind, payload: dict
    ) -> bool:
        """Одна попытка; ошибка логируется, уведомление отбрасывается"""
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(
                    f"{self._base_url}/api/notifications",
                    json={
                        "recipient_role": recipient_role.value,
                        "recipient_id": recipient_id,
                        "kind": kind.value,
                        "payload": payload,
                    },
                    headers={"X-API-Key": self._api_token},
                    timeout=10.0
                )

                if response.status_code in (200, 201, 202):
                    logger.info(f"Уведомление {kind.value} отправлено {recipient_role.value} {recipient_id}")
                    return True
                logger.warning(f"Уведомление вернуло статус {response.status_code}")

        except httpx.HTTPError as e:
            logger.warning(f"Ошибка отправки уведомления {kind.value}: {e}")

        return False


def map_openweather(condition_id: int, wind_speed: float = 0.0) -> WeatherCondition:
    """Коды условий OpenWeatherMap -> WeatherCondition"""
    if 200 <= condition_id < 300:
        return WeatherCondition.STORM
    if 300 <= condition_id < 400 or condition_id in (500, 501, 520):
        return WeatherCondition.LIGHT_RAIN
    if 500 <= condition_id < 600:
        return WeatherCondition.HEAVY_RAIN
    if 600 <= condition_id < 700 or condition_id == 781:
        return WeatherCondition.EXTREME
    if condition_id == 771:
        return WeatherCondition.WIND
    if 700 <= condition_id < 800:
        return WeatherCondition.FOG

    condition = WeatherCondition.CLEAR if condition_id == 800 else WeatherCondition.CLOUDY
    if wind_speed > STRONG_WIND_MS:
        return WeatherCondition.WIND
    return condition


class HTTPWeatherClient:
    """Провайдер погоды, совместимый с OpenWeatherMap /data/2.5/weather"""

    def __init__(self, base_url: str, api_key: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._base_url = base_url
        self._api_key = api_key
        self._transport = transport

    async def get_condition(self, latitude: float, longitude: float) -> WeatherCondition:
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.get(
                    f"{self._base_url}/data/2.5/weather",
                    params={"lat": latitude, "lon": longitude, "appid": self._api_key},
                    timeout=5.0
                )
        except httpx.RequestError as e:
            logger.error(f"Weather service ошибка подключения: {e}")
            raise WeatherServiceError(f"Weather service не доступен: {str(e)}")

        if response.status_code != 200:
            raise WeatherServiceError(f"Weather service ошибка: {response.status_code}")

        data = response.json()
        try:
            condition_id = int(data["weather"][0]["id"])
        except (KeyError, IndexError, TypeError, ValueError):
            raise WeatherServiceError(f"Weather service: неожиданный ответ {data}")
        wind_speed = float(data.get("wind", {}).get("speed", 0.0))
        return map_openweather(condition_id, wind_speed)
