# src/core/tracking/__init__.py
"""
Живые треки водителей: история, кинематика, анимация маркеров, вид карты.
"""

from src.core.tracking.animation import MarkerAnimator, ease_out_cubic
from src.core.tracking.state import DriverTrackState
from src.core.tracking.synchronizer import (
    DEFAULT_CENTER,
    LiveTrackSynchronizer,
    MapView,
    is_eligible,
)

__all__ = [
    "DEFAULT_CENTER",
    "DriverTrackState",
    "LiveTrackSynchronizer",
    "MapView",
    "MarkerAnimator",
    "ease_out_cubic",
    "is_eligible",
]
