# src/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ShipmentStatus(str, Enum):
    """Статусы отправки (груза)."""
    CREATED = "CREATED"
    ASSIGNED = "ASSIGNED"
    APPROVED = "APPROVED"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    CANCEL_BY_CUSTOMER = "CANCEL_BY_CUSTOMER"
    CANCEL_BY_DRIVER = "CANCEL_BY_DRIVER"


# Статусы, при которых водитель в пути и маршрут нужно показывать
EN_ROUTE_STATUSES: frozenset[ShipmentStatus] = frozenset({
    ShipmentStatus.APPROVED,
    ShipmentStatus.IN_TRANSIT,
})

# Финальные статусы
TERMINAL_STATUSES: frozenset[ShipmentStatus] = frozenset({
    ShipmentStatus.DELIVERED,
    ShipmentStatus.CANCEL_BY_CUSTOMER,
    ShipmentStatus.CANCEL_BY_DRIVER,
})


class RoutePhase(str, Enum):
    """Фаза маршрута."""
    TO_PICKUP = "TO_PICKUP"
    TO_DELIVERY = "TO_DELIVERY"


class ConnectionStatus(str, Enum):
    """Состояние realtime-соединения."""
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class ShareState(str, Enum):
    """Состояния трансляции геопозиции водителя."""
    IDLE = "idle"
    STARTING = "starting"
    SHARING = "sharing"


class ErrorSeverity(str, Enum):
    """Классы ошибок трекинга."""
    FATAL = "fatal"
    STICKY = "sticky"
    TRANSIENT = "transient"


class LocationSource(str, Enum):
    """Источник координат в событии."""
    DEVICE = "DEVICE"
    SIMULATED = "SIMULATED"


class RealtimeEvents:
    """Имена событий realtime-канала."""
    DRIVER_LOCATION_UPDATE = "driver-location-update"
    SHIPMENT_STATUS_UPDATE = "shipment-status-update"
    JOIN_TENANT = "join-tenant"
