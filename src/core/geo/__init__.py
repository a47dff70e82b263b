# src/core/geo/__init__.py
"""
Геометрия и кинематика.
Расстояния, курс, скорость, ETA и их форматирование.
"""

from src.core.geo.kinematics import (
    EARTH_RADIUS_M,
    bearing,
    distance,
    eta,
    format_distance,
    format_eta,
    format_speed,
    route_distance,
    route_remaining_distance,
    speed,
)

__all__ = [
    "EARTH_RADIUS_M",
    "bearing",
    "distance",
    "eta",
    "format_distance",
    "format_eta",
    "format_speed",
    "route_distance",
    "route_remaining_distance",
    "speed",
]
