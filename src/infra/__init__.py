# src/infra/__init__.py
"""
Инфраструктурный слой.
Работа с внешними сервисами: realtime-канал Socket.IO, HTTP API, датчик геопозиции.
"""

from src.infra.api_client import (
    ApiError,
    AuthenticationError,
    NotFoundError,
    PayloadError,
    ServerError,
    TrackingApiClient,
    TransportError,
)
from src.infra.geolocation import (
    GeolocationError,
    GeolocationErrorCode,
    GeolocationProvider,
    InvalidReadingError,
    PositionOptions,
    SimulatedGeolocationProvider,
)
from src.infra.realtime_channel import RealtimeChannel, SubscriptionToken

__all__ = [
    "ApiError",
    "AuthenticationError",
    "NotFoundError",
    "PayloadError",
    "ServerError",
    "TrackingApiClient",
    "TransportError",
    "GeolocationError",
    "GeolocationErrorCode",
    "GeolocationProvider",
    "InvalidReadingError",
    "PositionOptions",
    "SimulatedGeolocationProvider",
    "RealtimeChannel",
    "SubscriptionToken",
]
