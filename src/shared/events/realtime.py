# src/shared/events/realtime.py
"""
События realtime-канала.
Каждое событие валидируется на границе канала до раздачи подписчикам.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from src.common.constants import RealtimeEvents, ShipmentStatus


class RealtimeEvent(BaseModel):
    """Базовый класс входящих событий."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    event_type: str = ""


class EventLocation(BaseModel):
    """Координаты внутри события локации."""
    latitude: float
    longitude: float
    timestamp: datetime | None = None


class DriverLocationUpdate(RealtimeEvent):
    """Водитель прислал новую геопозицию."""
    event_type: Literal["driver-location-update"] = RealtimeEvents.DRIVER_LOCATION_UPDATE

    driver_id: str = Field(..., alias="driverId")
    location: EventLocation
    source: str | None = None


class ShipmentStatusUpdate(RealtimeEvent):
    """Изменился статус отправки."""
    event_type: Literal["shipment-status-update"] = RealtimeEvents.SHIPMENT_STATUS_UPDATE

    shipment_id: str = Field(..., alias="shipmentId")
    new_status: ShipmentStatus = Field(..., alias="newStatus")
    driver_id: str | None = Field(default=None, alias="driverId")
    pending_approval: bool | None = Field(default=None, alias="pendingApproval")


# Реестр моделей по имени события
EVENT_MODELS: dict[str, type[RealtimeEvent]] = {
    RealtimeEvents.DRIVER_LOCATION_UPDATE: DriverLocationUpdate,
    RealtimeEvents.SHIPMENT_STATUS_UPDATE: ShipmentStatusUpdate,
}


def parse_event(event_name: str, payload: Any) -> RealtimeEvent | Any:
    """
    Валидирует payload события.

    Для известных событий возвращает модель (или бросает ValueError,
    в том числе pydantic.ValidationError),
    для неизвестных payload возвращается без изменений.
    """
    model = EVENT_MODELS.get(event_name)
    if model is None:
        return payload
    if not isinstance(payload, dict):
        raise ValueError(f"Ожидался объект для события {event_name}, получено {type(payload).__name__}")
    return model.model_validate(payload)
