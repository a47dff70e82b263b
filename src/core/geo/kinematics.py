# src/core/geo/kinematics.py
"""
Кинематика водителя: расстояние, курс, скорость, ETA и форматирование.

Чистые функции без состояния и I/O. Некорректный ввод (None, NaN,
бесконечность, не-число) не вызывает исключений: результат вырождается
в 0 или в None ("неизвестно").
"""

from __future__ import annotations

import math
from typing import Any, Iterable, Sequence

# Средний радиус Земли в метрах
EARTH_RADIUS_M = 6371e3


def _num(value: Any) -> float | None:
    """Возвращает конечное число или None."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return float(value)


def _coords(*values: Any) -> list[float] | None:
    result = [_num(v) for v in values]
    if any(v is None for v in result):
        return None
    return result  # type: ignore[return-value]


def _point(point: Any) -> tuple[float, float] | None:
    """Достаёт (lat, lng) из словаря или объекта с полями lat/lng."""
    if isinstance(point, dict):
        lat, lng = point.get("lat"), point.get("lng")
    else:
        lat, lng = getattr(point, "lat", None), getattr(point, "lng", None)
    coords = _coords(lat, lng)
    return (coords[0], coords[1]) if coords else None


# =============================================================================
# РАССТОЯНИЕ И КУРС
# =============================================================================

def distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Расстояние по дуге большого круга (Haversine), в метрах.

    Returns:
        Расстояние в метрах, 0 при некорректных координатах
    """
    coords = _coords(lat1, lng1, lat2, lng2)
    if coords is None:
        return 0.0
    a_lat, a_lng, b_lat, b_lng = coords

    phi1 = math.radians(a_lat)
    phi2 = math.radians(b_lat)
    d_phi = math.radians(b_lat - a_lat)
    d_lambda = math.radians(b_lng - a_lng)

    a = (math.sin(d_phi / 2) ** 2
         + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2)
    # Ошибки округления могут дать a чуть больше 1
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def bearing(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Начальный курс от первой точки ко второй, градусы в [0, 360)."""
    coords = _coords(lat1, lng1, lat2, lng2)
    if coords is None:
        return 0.0
    a_lat, a_lng, b_lat, b_lng = coords

    phi1 = math.radians(a_lat)
    phi2 = math.radians(b_lat)
    d_lambda = math.radians(b_lng - a_lng)

    y = math.sin(d_lambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(d_lambda)

    result = (math.degrees(math.atan2(y, x)) + 360) % 360
    # (-1e-15 + 360) % 360 даёт ровно 360.0
    return 0.0 if result >= 360 else result


# =============================================================================
# СКОРОСТЬ И ETA
# =============================================================================

def speed(lat1: float, lng1: float, lat2: float, lng2: float, dt_ms: float) -> float:
    """
    Мгновенная скорость между двумя точками, км/ч.

    Args:
        dt_ms: Интервал между точками в миллисекундах

    Returns:
        Скорость >= 0; ровно 0, если интервал не положительный
    """
    dt = _num(dt_ms)
    if dt is None or dt <= 0:
        return 0.0

    meters = distance(lat1, lng1, lat2, lng2)
    kmh = (meters / 1000) / (dt / 3_600_000)
    return max(0.0, kmh)


def eta(remaining_meters: float, speed_kmh: float) -> int | None:
    """
    Оставшееся время в минутах (округление вверх).

    Returns:
        Минуты или None, если скорость неизвестна или не положительна
    """
    v = _num(speed_kmh)
    if v is None or v <= 0:
        return None

    meters = _num(remaining_meters)
    if meters is None or meters <= 0:
        return 0

    minutes = (meters / 1000) / v * 60
    return math.ceil(minutes)


# =============================================================================
# МАРШРУТ
# =============================================================================

def route_distance(points: Iterable[Any]) -> float:
    """Суммарная длина маршрута по последовательным отрезкам, в метрах."""
    coords = [p for p in (_point(item) for item in points or []) if p is not None]
    total = 0.0
    for (lat1, lng1), (lat2, lng2) in zip(coords, coords[1:]):
        total += distance(lat1, lng1, lat2, lng2)
    return total


def route_remaining_distance(
    lat: float,
    lng: float,
    points: Sequence[Any],
    current_step: int,
) -> float:
    """
    Оставшееся расстояние по маршруту: от текущей позиции до
    points[current_step + 1] плюс все последующие отрезки.

    Returns:
        Метры; 0, если маршрут пуст или шаг уже последний
    """
    if not points or _num(current_step) is None:
        return 0.0
    step = int(current_step)
    if step < 0 or step >= len(points) - 1:
        return 0.0

    next_point = _point(points[step + 1])
    if next_point is None:
        return 0.0

    return distance(lat, lng, next_point[0], next_point[1]) + route_distance(points[step + 1:])


# =============================================================================
# ФОРМАТИРОВАНИЕ
# =============================================================================

def format_distance(meters: float) -> str:
    """Метры в строку: "850m" или "1.2km"."""
    value = _num(meters) or 0.0
    if value < 1000:
        return f"{round(value)}m"
    return f"{value / 1000:.1f}km"


def format_speed(speed_kmh: float) -> str:
    """Скорость в строку: "42 km/h"."""
    value = _num(speed_kmh) or 0.0
    return f"{round(value)} km/h"


def format_eta(minutes: int | None) -> str:
    """Минуты в строку: "5 min", "1h 5min", "2h"; если неизвестно, "Calculating..."."""
    value = _num(minutes)
    if not value:
        return "Calculating..."
    total = math.ceil(value)
    if total < 60:
        return f"{total} min"
    hours, rest = divmod(total, 60)
    return f"{hours}h {rest}min" if rest else f"{hours}h"
