"""
Чистая математика ценообразования доставки.

Четыре множителя (время, погода, спрос, транспорт) независимы: внутри каждой
категории берется максимум по сработавшим правилам, не среднее. Бонусы
прибавляются после умножения. Итог округляется вверх до шага и зажимается в
[min_price, max_price].
"""
import math
from typing import Iterable, Optional

from delivery_core.domain.models import (
    PricingConfig, PricingRule, RuleType, Multipliers, Bonuses,
    WeatherCondition, VehicleType, ZoneKind
)

W = WeatherCondition

RAINY_CONDITIONS = frozenset({W.LIGHT_RAIN, W.HEAVY_RAIN})

NIGHT_START_HOUR = 20
NIGHT_END_HOUR = 6

NIGHT_SAFETY_BONUS = {
    ZoneKind.SUBURB: 50,
    ZoneKind.VILLAGE: 50,
    ZoneKind.MOUNTAIN: 80,
}
EQUIPMENT_BONUS = 30

HIGH_DEMAND_WARNING_THRESHOLD = 1.5

VEHICLE_WEATHER_MULTIPLIERS: dict[VehicleType, dict[WeatherCondition, float]] = {
    VehicleType.MOTO: {W.HEAVY_RAIN: 1.3, W.STORM: 1.3},
    VehicleType.BICYCLE: {W.LIGHT_RAIN: 1.4, W.HEAVY_RAIN: 1.8, W.WIND: 1.3},
}
CAR_MULTIPLIER = 0.95

WEATHER_WARNINGS = {
    W.LIGHT_RAIN: "Небольшой дождь — будьте осторожны на дороге",
    W.HEAVY_RAIN: "Сильный дождь — повышенный риск",
    W.STORM: "Гроза — опасные условия",
    W.FOG: "Туман — ограниченная видимость",
    W.WIND: "Сильный ветер — внимание двухколесным",
}
NIGHT_WARNING = "Ночная доставка — будьте осторожны"
HIGH_DEMAND_WARNING = "Высокий спрос — возможность повышенного заработка"
DEGRADED_WARNING = "Расчет в упрощенном режиме"


def base_price(config: PricingConfig, distance_km: float) -> float:
    return config.base_fee + distance_km * config.price_per_km


def is_night(hour: int) -> bool:
    return hour >= NIGHT_START_HOUR or hour < NIGHT_END_HOUR


def _hour_in_window(hour: int, start: int, end: int) -> bool:
    # Окно включительно; поддерживает переход через полночь (22..5)
    if start <= end:
        return start <= hour <= end
    return hour >= start or hour <= end


def evaluate_rule(rule: PricingRule, hour: int, weather: WeatherCondition, demand_ratio: float) -> float:
    value = rule.condition_value
    if rule.rule_type == RuleType.TIME:
        if isinstance(value, list) and len(value) == 2:
            if _hour_in_window(hour, int(value[0]), int(value[1])):
                return rule.multiplier
        return 1.0
    if rule.rule_type == RuleType.WEATHER:
        if isinstance(value, str) and value.replace('"', "") == weather.value:
            return rule.multiplier
        return 1.0
    if rule.rule_type == RuleType.DEMAND:
        if value is None:
            return 1.0
        threshold = float(value)
        operator = rule.condition_operator or ">="
        if operator == ">=" and demand_ratio >= threshold:
            return rule.multiplier
        if operator == ">" and demand_ratio > threshold:
            return rule.multiplier
        return 1.0
    return 1.0


def vehicle_multiplier(vehicle_type: VehicleType, weather: WeatherCondition) -> float:
    if vehicle_type == VehicleType.CAR:
        return CAR_MULTIPLIER
    return VEHICLE_WEATHER_MULTIPLIERS.get(vehicle_type, {}).get(weather, 1.0)


def compute_multipliers(
    rules: Iterable[PricingRule],
    zone_multiplier: float,
    hour: int,
    weather: WeatherCondition,
    demand_ratio: float,
    vehicle_type: VehicleType,
) -> Multipliers:
    multipliers = Multipliers(zone=zone_multiplier or 1.0)
    for rule in sorted(rules, key=lambda r: r.priority):
        if not rule.is_active:
            continue
        value = evaluate_rule(rule, hour, weather, demand_ratio)
        if value <= 1.0:
            continue
        if rule.rule_type == RuleType.TIME:
            multipliers.time = max(multipliers.time, value)
        elif rule.rule_type == RuleType.WEATHER:
            multipliers.weather = max(multipliers.weather, value)
        elif rule.rule_type == RuleType.DEMAND:
            multipliers.demand = max(multipliers.demand, value)
    multipliers.vehicle = vehicle_multiplier(vehicle_type, weather)
    return multipliers


def compute_bonuses(hour: int, weather: WeatherCondition, has_rain_gear: bool,
                    zone_kind: Optional[ZoneKind]) -> Bonuses:
    bonuses = Bonuses()
    if is_night(hour) and zone_kind is not None:
        bonuses.night_safety = NIGHT_SAFETY_BONUS.get(zone_kind, 0)
    if weather in RAINY_CONDITIONS and has_rain_gear:
        bonuses.equipment = EQUIPMENT_BONUS
    return bonuses


def finalize_price(raw_price: float, config: PricingConfig) -> float:
    """Округление вверх до шага, затем зажим в [min_price, max_price]"""
    step = config.rounding_step if config.rounding_step > 0 else 1
    # round(.., 6) убирает хвосты float перед ceil
    rounded = math.ceil(round(raw_price / step, 6)) * step
    return float(max(config.min_price, min(config.max_price, rounded)))


def build_warnings(weather: WeatherCondition, multipliers: Multipliers) -> list[str]:
    warnings: list[str] = []
    if multipliers.time > 1.0:
        warnings.append(NIGHT_WARNING)
    if weather in WEATHER_WARNINGS:
        warnings.append(WEATHER_WARNINGS[weather])
    if multipliers.demand > HIGH_DEMAND_WARNING_THRESHOLD:
        warnings.append(HIGH_DEMAND_WARNING)
    return warnings


def build_breakdown(base: float, multipliers: Multipliers, bonuses: Bonuses, final: float) -> str:
    lines = [f"Базовая цена: {round(base)} DA"]
    for name, value in multipliers.model_dump().items():
        if value != 1.0:
            lines.append(f"{name}: x{value:.2f}")
    for name, value in bonuses.model_dump().items():
        if value > 0:
            lines.append(f"Бонус {name}: +{round(value)} DA")
    lines.append(f"Итого: {round(final)} DA")
    return "\n".join(lines)
