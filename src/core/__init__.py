# src/core/__init__.py
"""
Доменный слой трекинга.
Кинематика, трансляция геопозиции, живые треки и кэш маршрутов.
"""

from src.core.errors import ErrorKind, TrackingError
from src.core.fleet import FleetStore
from src.core.location_sharing import LocationSharingSession
from src.core.routes import RetryPolicy, RouteCacheRefresher
from src.core.tracking import LiveTrackSynchronizer, MapView
from src.core.session import TrackingSession

__all__ = [
    "ErrorKind",
    "TrackingError",
    "FleetStore",
    "LocationSharingSession",
    "RetryPolicy",
    "RouteCacheRefresher",
    "LiveTrackSynchronizer",
    "MapView",
    "TrackingSession",
]
